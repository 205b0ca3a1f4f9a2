"""Persistence gateway contract and its HTTP implementation for the document store."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx

from semantic_ingestion.config import get_settings
from semantic_ingestion.models.chunk import Chunk, ChunkMetadata
from semantic_ingestion.models.document import FileUrl
from semantic_ingestion.models.graph import EmbeddedChunk, EmbeddingPage, GraphNode, SimilarityEdge
from semantic_ingestion.models.message import ProcessingStatus
from semantic_ingestion.utils.errors import NotFoundError, StoreError
from semantic_ingestion.utils.logging import get_logger

logger = get_logger("store_client")

_METADATA_KEYS = set(ChunkMetadata.model_fields) | {
    f.alias for f in ChunkMetadata.model_fields.values() if f.alias
}


class PersistenceGateway(ABC):
    """
    Storage operations the ingestion pipeline depends on.

    Implementations must raise ``NotFoundError`` for unknown chunk ids and
    missing files, and a retryable error for transient failures.
    """

    @abstractmethod
    async def insert_chunk(
        self,
        parent_id: str,
        page_content: str,
        metadata: ChunkMetadata,
        chunk_number: Optional[int] = None,
    ) -> None:
        """Insert one chunk under ``parent_id``."""

    @abstractmethod
    async def insert_chunks(self, parent_id: str, chunks: Sequence[Chunk]) -> None:
        """Insert a batch of chunks under ``parent_id``."""

    @abstractmethod
    async def update_chunk_embedding(self, unique_chunk_id: str, embedding: List[float]) -> None:
        """Set the embedding of an existing chunk."""

    @abstractmethod
    async def get_all_embeddings(self, limit: int, cursor: Optional[str] = None) -> EmbeddingPage:
        """Page through embedded chunks in ascending chunk id order."""

    @abstractmethod
    async def upsert_graph_node(
        self,
        document_chunk_id: str,
        label: str,
        group: str,
        significance: Optional[float] = None,
        id: Optional[str] = None,
    ) -> str:
        """Insert a node, or patch node ``id``; returns the store id."""

    @abstractmethod
    async def upsert_graph_link(
        self,
        source: str,
        target: str,
        similarity: float,
        relationship: str,
        id: Optional[str] = None,
    ) -> str:
        """Insert a link, or patch link ``id``; returns the store id."""

    @abstractmethod
    async def batch_upsert_graph_nodes(self, nodes: Sequence[GraphNode]) -> List[str]:
        """Insert many nodes; returns their store ids."""

    @abstractmethod
    async def batch_upsert_graph_links(self, links: Sequence[SimilarityEdge]) -> List[str]:
        """Insert many links; returns their store ids."""

    @abstractmethod
    async def get_file_url(self, file_id: str) -> FileUrl:
        """Resolve a stored file into a signed download URL."""

    @abstractmethod
    async def get_parent_project_id(self, document_id: str) -> Optional[str]:
        """Project that chunks of ``document_id`` are filed under, if any."""

    @abstractmethod
    async def update_processing_status(self, document_id: str, status: ProcessingStatus) -> None:
        """Record processing progress for a document."""


def _node_to_store(node: GraphNode) -> Dict[str, Any]:
    return {
        "documentChunkId": node.id,
        "label": node.label,
        "group": node.group,
        "significance": node.significance,
    }


def _chunk_to_store(chunk: Chunk) -> Dict[str, Any]:
    return chunk.model_dump(by_alias=True, exclude_none=True, exclude={"document_id"})


def _embedded_chunk_from_store(raw: Dict[str, Any]) -> EmbeddedChunk:
    # Stored metadata may carry fields this service never writes
    metadata = {k: v for k, v in (raw.get("metadata") or {}).items() if k in _METADATA_KEYS and v is not None}
    return EmbeddedChunk(
        id=raw["id"],
        page_content=raw.get("pageContent"),
        embedding=raw.get("embedding") or [],
        metadata=ChunkMetadata.model_validate(metadata),
    )


class DocumentStoreClient(PersistenceGateway):
    """
    Document store gateway over the store's HTTP function API.

    Every call is ``POST {base_url}/api/{query|mutation}`` with
    ``{"path": "<module>:<function>", "args": {...}, "format": "json"}``. The
    store answers ``{"status": "success", "value": ...}`` or
    ``{"status": "error", "errorMessage": ...}``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.store.url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.store.timeout
        self._headers: Dict[str, str] = {"Content-Type": "application/json"}

        api_key = api_key or settings.store.api_key
        if api_key:
            self._headers["Authorization"] = f"Convex {api_key}"
        else:
            logger.debug("No store API key provided - requests will be unauthenticated")

    async def _call(self, kind: str, path: str, args: Dict[str, Any]) -> Any:
        """
        Invoke a store function and return its ``value``.

        Raises:
            NotFoundError: If the store reports a missing resource
            StoreError: On store errors, HTTP errors, timeouts or transport failures
        """
        url = f"{self.base_url}/api/{kind}"
        payload = {"path": path, "args": args, "format": "json"}
        logger.debug(f"POST {url} path={path}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=self._headers)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            raise StoreError(f"Store request timed out: {path}", function=path) from e
        except httpx.HTTPStatusError as e:
            raise StoreError(
                f"Store request failed with status {e.response.status_code}: {path}",
                function=path,
                details={"status_code": e.response.status_code, "body": e.response.text[:500]},
            ) from e
        except httpx.RequestError as e:
            raise StoreError(f"Store request failed: {e}", function=path) from e
        except ValueError as e:
            raise StoreError(f"Store returned invalid JSON: {path}", function=path) from e

        if body.get("status") == "success":
            return body.get("value")

        message = body.get("errorMessage") or "Unknown store error"
        if "not found" in message.lower():
            raise NotFoundError("Store resource", details={"function": path, "error": message})
        raise StoreError(message, function=path)

    async def query(self, path: str, args: Dict[str, Any]) -> Any:
        return await self._call("query", path, args)

    async def mutation(self, path: str, args: Dict[str, Any]) -> Any:
        return await self._call("mutation", path, args)

    async def insert_chunk(
        self,
        parent_id: str,
        page_content: str,
        metadata: ChunkMetadata,
        chunk_number: Optional[int] = None,
    ) -> None:
        args: Dict[str, Any] = {
            "parentProjectId": parent_id,
            "pageContent": page_content,
            "metadata": metadata.to_store(),
        }
        if chunk_number is not None:
            args["chunkNumber"] = chunk_number
        await self.mutation("chunks:insertChunk", args)

    async def insert_chunks(self, parent_id: str, chunks: Sequence[Chunk]) -> None:
        await self.mutation(
            "chunks:insertChunks",
            {"parentProjectId": parent_id, "chunks": [_chunk_to_store(c) for c in chunks]},
        )

    async def update_chunk_embedding(self, unique_chunk_id: str, embedding: List[float]) -> None:
        try:
            await self.mutation(
                "chunks:updateChunkEmbedding",
                {"uniqueChunkId": unique_chunk_id, "embedding": list(embedding)},
            )
        except NotFoundError as e:
            raise NotFoundError("Chunk", unique_chunk_id, details=e.details) from e

    async def get_all_embeddings(self, limit: int, cursor: Optional[str] = None) -> EmbeddingPage:
        value = await self.query("chunks:getAllEmbeddings", {"limit": limit, "cursor": cursor})
        value = value or {}
        return EmbeddingPage(
            chunks=[_embedded_chunk_from_store(raw) for raw in value.get("chunks") or []],
            next_cursor=value.get("nextCursor"),
        )

    async def upsert_graph_node(
        self,
        document_chunk_id: str,
        label: str,
        group: str,
        significance: Optional[float] = None,
        id: Optional[str] = None,
    ) -> str:
        args: Dict[str, Any] = {"documentChunkId": document_chunk_id, "label": label, "group": group}
        if significance is not None:
            args["significance"] = significance
        if id is not None:
            args["id"] = id
        result = await self.mutation("graph:upsertGraphNode", args)
        # A patch returns nothing; the node keeps its id
        return result if result is not None else id

    async def upsert_graph_link(
        self,
        source: str,
        target: str,
        similarity: float,
        relationship: str,
        id: Optional[str] = None,
    ) -> str:
        args: Dict[str, Any] = {
            "source": source,
            "target": target,
            "similarity": similarity,
            "relationship": relationship,
        }
        if id is not None:
            args["id"] = id
        result = await self.mutation("graph:upsertGraphLink", args)
        return result if result is not None else id

    async def batch_upsert_graph_nodes(self, nodes: Sequence[GraphNode]) -> List[str]:
        result = await self.mutation("graph:batchUpsertGraphNodes", {"nodes": [_node_to_store(n) for n in nodes]})
        return list(result or [])

    async def batch_upsert_graph_links(self, links: Sequence[SimilarityEdge]) -> List[str]:
        result = await self.mutation("graph:batchUpsertGraphLinks", {"links": [link.to_store() for link in links]})
        return list(result or [])

    async def get_file_url(self, file_id: str) -> FileUrl:
        value = await self.mutation("projects:getFileUrl", {"fileId": file_id})
        if isinstance(value, dict):
            value = value.get("url")
        if not value:
            raise NotFoundError("File", file_id)
        return FileUrl(file_id=file_id, url=value)

    async def get_parent_project_id(self, document_id: str) -> Optional[str]:
        return await self.query("projects:getParentProjectId", {"documentId": document_id})

    async def update_processing_status(self, document_id: str, status: ProcessingStatus) -> None:
        await self.mutation("projects:updateProcessingStatus", {"documentId": document_id, **status.to_store()})
