"""Chunk models for document ingestion."""

import uuid
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StoreModel(BaseModel):
    """Base model serialized with the document store's camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChunkMetadata(StoreModel):
    """Metadata attached to a chunk. The field set is closed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    is_heading: bool = Field(default=False, description="Chunk is a standalone heading line")
    headings: List[str] = Field(default_factory=list, description="Heading path in effect for the chunk")
    keywords: List[str] = Field(default_factory=list, description="Most frequent words, most frequent first")
    entities: List[str] = Field(default_factory=list, description="Capitalized bigrams, first seen first")
    topics: List[str] = Field(default_factory=list, description="Coarse topic labels")
    page_number: Optional[int] = Field(default=None, description="1-based source page")
    num_tokens: Optional[int] = Field(default=None, ge=0, description="Token count of the chunk text")
    snippet: Optional[str] = Field(default=None, description="Short preview of the chunk")
    doc_title: Optional[str] = Field(default=None, description="Title of the source document")
    doc_author: Optional[str] = Field(default=None, description="Author of the source document")


class Chunk(StoreModel):
    """A bounded span of document text with its metadata and, eventually, its embedding."""

    unique_chunk_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()), description="Globally unique chunk identifier"
    )
    document_id: Optional[str] = Field(default=None, description="Parent document identifier")
    chunk_number: int = Field(..., ge=1, description="1-based position of the chunk within its document")
    page_content: str = Field(..., description="Chunk text")
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
    embedding: Optional[List[float]] = Field(default=None, description="Embedding vector, set once")

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


class ChunkParams(BaseModel):
    """Segmentation window parameters, in characters."""

    chunk_size: int = Field(..., gt=0)
    chunk_overlap: int = Field(..., ge=0)
