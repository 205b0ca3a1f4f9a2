"""Similarity graph builds: full rebuilds and incremental updates."""

from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, TypeVar

from semantic_ingestion.clients.store_client import PersistenceGateway
from semantic_ingestion.config import get_settings
from semantic_ingestion.models.graph import EmbeddedChunk, GraphBuildResult, GraphNode, SimilarityEdge
from semantic_ingestion.utils.logging import get_logger
from semantic_ingestion.utils.retry import RetryPolicy
from semantic_ingestion.workers.graph_worker import GraphWorkerClient

logger = get_logger("graph_service")
settings = get_settings()

T = TypeVar("T")


class GraphService:
    """
    Derive the chunk similarity graph and persist it through the gateway.

    Heavy lifting happens in the graph worker; this service pages embeddings
    out of the store, hands them to the worker and writes the results back
    in upsert batches.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        worker: GraphWorkerClient,
        retry_policy: Optional[RetryPolicy] = None,
        top_k: Optional[int] = None,
        min_similarity: Optional[float] = None,
        page_size: Optional[int] = None,
        upsert_batch_size: Optional[int] = None,
    ):
        self.gateway = gateway
        self.worker = worker
        self.retry_policy = retry_policy or RetryPolicy()
        self.top_k = top_k or settings.graph.top_k
        self.min_similarity = settings.graph.min_similarity if min_similarity is None else min_similarity
        self.page_size = page_size or settings.graph.page_size
        self.upsert_batch_size = upsert_batch_size or settings.graph.upsert_batch_size

    async def load_embeddings(self) -> List[EmbeddedChunk]:
        """Read every embedded chunk, following the store's cursor."""
        chunks: List[EmbeddedChunk] = []
        cursor: Optional[str] = None
        while True:
            page = await self.retry_policy.run(
                lambda: self.gateway.get_all_embeddings(self.page_size, cursor)
            )
            chunks.extend(page.chunks)
            if not page.next_cursor or not page.chunks:
                break
            cursor = page.next_cursor
        logger.info(f"Loaded embedded chunks: count={len(chunks)}")
        return chunks

    async def rebuild_graph(self) -> GraphBuildResult:
        """Build nodes and links for the whole corpus."""
        embeddings = await self.load_embeddings()
        if not embeddings:
            logger.info("No embedded chunks; graph left empty")
            return GraphBuildResult()

        nodes = await self.worker.build_graph(embeddings)
        links = await self.worker.calculate_similarities(
            embeddings, self.top_k, min_similarity=self.min_similarity
        )
        return await self._persist(nodes, links)

    async def update_graph_for_chunks(self, chunk_ids: Iterable[str]) -> GraphBuildResult:
        """
        Add nodes for new chunks and their outgoing links.

        New chunks are compared against the whole corpus, so they can link to
        chunks of earlier documents. Existing links are left untouched.
        """
        wanted = set(chunk_ids)
        if not wanted:
            return GraphBuildResult()

        embeddings = await self.load_embeddings()
        new_chunks = [c for c in embeddings if c.id in wanted]
        if not new_chunks:
            logger.warning(f"None of the {len(wanted)} chunks have embeddings yet; skipping graph update")
            return GraphBuildResult()

        nodes = await self.worker.build_graph(new_chunks)
        links = await self.worker.calculate_similarities(
            embeddings,
            self.top_k,
            min_similarity=self.min_similarity,
            source_ids=[c.id for c in new_chunks],
        )
        return await self._persist(nodes, links)

    async def _persist(self, nodes: Sequence[GraphNode], links: Sequence[SimilarityEdge]) -> GraphBuildResult:
        node_ids = await self._upsert_in_batches(nodes, self.gateway.batch_upsert_graph_nodes)
        link_ids = await self._upsert_in_batches(links, self.gateway.batch_upsert_graph_links)
        logger.info(f"Graph persisted: nodes={len(nodes)}, links={len(links)}")
        return GraphBuildResult(nodes=len(nodes), links=len(links), node_ids=node_ids, link_ids=link_ids)

    async def _upsert_in_batches(
        self,
        items: Sequence[T],
        upsert: Callable[[Sequence[T]], Awaitable[List[str]]],
    ) -> List[str]:
        ids: List[str] = []
        for start in range(0, len(items), self.upsert_batch_size):
            batch = list(items[start : start + self.upsert_batch_size])
            ids.extend(await self.retry_policy.run(lambda: upsert(batch)))
        return ids
