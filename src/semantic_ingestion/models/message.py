"""Message models: similarity worker protocol and document processing requests."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from semantic_ingestion.models.chunk import StoreModel
from semantic_ingestion.models.graph import EmbeddedChunk, GraphNode


class WorkerMessageType(str, Enum):
    """Message types exchanged with the similarity worker."""

    CALCULATE_SIMILARITIES = "CALCULATE_SIMILARITIES"
    SIMILARITIES_CALCULATED = "SIMILARITIES_CALCULATED"
    BUILD_GRAPH = "BUILD_GRAPH"
    NODES_BUILT = "NODES_BUILT"
    ERROR = "ERROR"


class WorkerEnvelope(BaseModel):
    """
    Envelope for every message crossing the worker boundary.

    Envelopes are serialized to plain dicts before they are handed to the
    worker process; the response echoes the request's ``correlation_id``.
    """

    type: str
    correlation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    data: Any = None

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class CalculateSimilaritiesData(StoreModel):
    """Payload of a CALCULATE_SIMILARITIES request."""

    embeddings: List[EmbeddedChunk]
    top_k: int = Field(..., gt=0)
    min_similarity: float = 0.0
    # Restrict sources to these chunk ids (incremental updates); None means every chunk
    source_ids: Optional[List[str]] = None


class BuildGraphData(StoreModel):
    """Payload of a BUILD_GRAPH request."""

    embeddings: List[EmbeddedChunk]


class NodesBuiltData(StoreModel):
    """Payload of a NODES_BUILT response."""

    nodes: List[GraphNode]


class WorkerErrorData(StoreModel):
    """Payload of an ERROR response."""

    message: str
    error_type: Optional[str] = None


class ProcessDocumentRequest(StoreModel):
    """Request to run the ingestion pipeline on one uploaded document."""

    document_id: str = Field(..., description="Document (project) identifier in the store")
    file_id: str = Field(..., description="Storage identifier of the uploaded file")
    file_type: str = Field(default="pdf", description="File type/extension (pdf, txt, md)")
    filename: Optional[str] = Field(default=None, description="Original filename")


class ProcessingStatus(StoreModel):
    """Processing progress reported back to the store."""

    progress: Optional[int] = Field(default=None, ge=0, le=100)
    is_processing: Optional[bool] = None
    is_processed: Optional[bool] = None
    processed_at: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def completed(cls) -> "ProcessingStatus":
        return cls(
            progress=100,
            is_processing=False,
            is_processed=True,
            processed_at=datetime.utcnow().isoformat(),
        )

    @classmethod
    def failed(cls, error_message: str) -> "ProcessingStatus":
        return cls(is_processing=False, is_processed=False, error_message=error_message)


class ProcessingResult(StoreModel):
    """Summary of one pipeline run."""

    document_id: str
    total_chunks: int = 0
    total_embeddings: int = 0
    failed_chunk_ids: List[str] = Field(default_factory=list)
    graph_nodes: int = 0
    graph_links: int = 0
