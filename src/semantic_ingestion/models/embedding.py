"""Embedding write-back models."""

from typing import List

from pydantic import BaseModel, Field


class EmbeddingUpdateReport(BaseModel):
    """Result of writing a set of embeddings back to the store."""

    total: int = Field(0, description="Embeddings submitted")
    updated: int = Field(0, description="Embeddings written successfully")
    failed_chunk_ids: List[str] = Field(default_factory=list, description="Chunks whose write failed")
    failed_batches: List[int] = Field(default_factory=list, description="1-based indexes of failing batches")

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_chunk_ids)
