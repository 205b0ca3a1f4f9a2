"""Similarity graph models."""

from typing import List, Optional

from pydantic import Field

from semantic_ingestion.models.chunk import ChunkMetadata, StoreModel


class EmbeddedChunk(StoreModel):
    """A stored chunk that already carries an embedding."""

    id: str = Field(..., description="Unique chunk identifier")
    page_content: Optional[str] = Field(default=None)
    embedding: List[float] = Field(default_factory=list)
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)


class EmbeddingPage(StoreModel):
    """One page of ``get_all_embeddings`` results."""

    chunks: List[EmbeddedChunk] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None)


class GraphNode(StoreModel):
    """Graph node derived from a chunk."""

    id: str = Field(..., description="Chunk identifier the node represents")
    label: str
    group: str = "default"
    significance: float = 0.0


class SimilarityEdge(StoreModel):
    """Directed similarity link between two chunks."""

    source: str
    target: str
    similarity: float = Field(..., ge=-1.0, le=1.0)
    relationship: str = "related"


class GraphBuildResult(StoreModel):
    """Outcome of a graph build or incremental update."""

    nodes: int = 0
    links: int = 0
    node_ids: List[str] = Field(default_factory=list)
    link_ids: List[str] = Field(default_factory=list)
