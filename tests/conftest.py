"""Pytest configuration and fixtures."""

import itertools
import uuid
from typing import Dict, List, Optional, Sequence, Tuple
from unittest.mock import patch

import pytest

from semantic_ingestion.clients.store_client import PersistenceGateway
from semantic_ingestion.models.chunk import Chunk, ChunkMetadata
from semantic_ingestion.models.document import FileUrl
from semantic_ingestion.models.graph import EmbeddedChunk, EmbeddingPage, GraphNode, SimilarityEdge
from semantic_ingestion.models.message import ProcessingStatus
from semantic_ingestion.utils.errors import NotFoundError, StoreError
from semantic_ingestion.utils.retry import RetryPolicy


class InMemoryGateway(PersistenceGateway):
    """PersistenceGateway backed by dicts, with hooks for injecting failures."""

    def __init__(self):
        self.chunks: Dict[str, Chunk] = {}
        self.chunk_parents: Dict[str, str] = {}
        self.parents: Dict[str, str] = {}
        self.files: Dict[str, str] = {}
        self.nodes: List[dict] = []
        self.links: List[dict] = []
        self.statuses: List[Tuple[str, ProcessingStatus]] = []
        self.insert_batches: List[int] = []
        self.node_batches: List[int] = []
        self.link_batches: List[int] = []
        self.embedding_writes: List[str] = []
        self.failing_embedding_ids: set = set()
        self._ids = itertools.count(1)

    def add_embedded_chunk(self, chunk_id: str, embedding: List[float], **metadata) -> None:
        self.chunks[chunk_id] = Chunk(
            unique_chunk_id=chunk_id,
            chunk_number=len(self.chunks) + 1,
            page_content=f"content of {chunk_id}",
            metadata=ChunkMetadata(**metadata),
            embedding=embedding,
        )

    async def insert_chunk(
        self,
        parent_id: str,
        page_content: str,
        metadata: ChunkMetadata,
        chunk_number: Optional[int] = None,
    ) -> None:
        chunk_id = str(uuid.uuid4())
        self.chunks[chunk_id] = Chunk(
            unique_chunk_id=chunk_id,
            chunk_number=chunk_number or len(self.chunks) + 1,
            page_content=page_content,
            metadata=metadata,
        )
        self.chunk_parents[chunk_id] = parent_id

    async def insert_chunks(self, parent_id: str, chunks: Sequence[Chunk]) -> None:
        self.insert_batches.append(len(chunks))
        for chunk in chunks:
            self.chunks[chunk.unique_chunk_id] = chunk.model_copy(deep=True, update={"embedding": None})
            self.chunk_parents[chunk.unique_chunk_id] = parent_id

    async def update_chunk_embedding(self, unique_chunk_id: str, embedding: List[float]) -> None:
        if unique_chunk_id in self.failing_embedding_ids:
            raise StoreError("write rejected", function="chunks:updateChunkEmbedding")
        if unique_chunk_id not in self.chunks:
            raise NotFoundError("Chunk", unique_chunk_id)
        self.chunks[unique_chunk_id].embedding = list(embedding)
        self.embedding_writes.append(unique_chunk_id)

    async def get_all_embeddings(self, limit: int, cursor: Optional[str] = None) -> EmbeddingPage:
        ids = sorted(cid for cid, c in self.chunks.items() if c.embedding and (cursor is None or cid > cursor))
        page_ids = ids[:limit]
        return EmbeddingPage(
            chunks=[
                EmbeddedChunk(
                    id=cid,
                    page_content=self.chunks[cid].page_content,
                    embedding=self.chunks[cid].embedding,
                    metadata=self.chunks[cid].metadata,
                )
                for cid in page_ids
            ],
            next_cursor=page_ids[-1] if len(page_ids) == limit else None,
        )

    async def upsert_graph_node(self, document_chunk_id, label, group, significance=None, id=None) -> str:
        node_id = id or f"node-{next(self._ids)}"
        self.nodes.append({"id": node_id, "documentChunkId": document_chunk_id, "label": label, "group": group})
        return node_id

    async def upsert_graph_link(self, source, target, similarity, relationship, id=None) -> str:
        link_id = id or f"link-{next(self._ids)}"
        self.links.append({"id": link_id, "source": source, "target": target, "similarity": similarity})
        return link_id

    async def batch_upsert_graph_nodes(self, nodes: Sequence[GraphNode]) -> List[str]:
        self.node_batches.append(len(nodes))
        return [await self.upsert_graph_node(n.id, n.label, n.group, n.significance) for n in nodes]

    async def batch_upsert_graph_links(self, links: Sequence[SimilarityEdge]) -> List[str]:
        self.link_batches.append(len(links))
        return [
            await self.upsert_graph_link(link.source, link.target, link.similarity, link.relationship)
            for link in links
        ]

    async def get_file_url(self, file_id: str) -> FileUrl:
        if file_id not in self.files:
            raise NotFoundError("File", file_id)
        return FileUrl(file_id=file_id, url=self.files[file_id])

    async def get_parent_project_id(self, document_id: str) -> Optional[str]:
        return self.parents.get(document_id)

    async def update_processing_status(self, document_id: str, status: ProcessingStatus) -> None:
        self.statuses.append((document_id, status))


class FakeEncoding:
    """Whitespace tokenizer standing in for a tiktoken encoding."""

    def encode(self, text: str, **kwargs) -> List[int]:
        return list(range(len(text.split())))


@pytest.fixture(autouse=True)
def fake_tiktoken():
    """Keep unit tests off the network; tiktoken downloads encodings on first use."""
    with patch("semantic_ingestion.services.chunking_service.tiktoken.get_encoding", return_value=FakeEncoding()) as m:
        yield m


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy that never sleeps."""
    return RetryPolicy(retries=2, initial_delay=0, max_jitter=0)
