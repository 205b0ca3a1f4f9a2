"""Embedding generation and write-back (provider-agnostic)."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional, Sequence

from semantic_ingestion.config import EmbeddingProvider as ProviderType
from semantic_ingestion.config import get_settings
from semantic_ingestion.models.chunk import Chunk
from semantic_ingestion.models.embedding import EmbeddingUpdateReport
from semantic_ingestion.utils.errors import EmbeddingError, ValidationError
from semantic_ingestion.utils.logging import get_logger
from semantic_ingestion.utils.retry import RetryPolicy

if TYPE_CHECKING:
    from semantic_ingestion.clients.store_client import PersistenceGateway

logger = get_logger("embedding_service")
settings = get_settings()


class EmbeddingProvider(ABC):
    """Anything that turns a list of texts into one vector per text."""

    model_name: str = ""

    @abstractmethod
    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """Embed ``texts`` in one call, preserving order."""

    def ensure_ready(self) -> None:
        """Raise if the provider cannot be used at all; checked once, before any retry."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Embeddings from OpenAI or Azure OpenAI.

    Providers:
    - openai: OpenAI direct API
    - azure: Azure OpenAI (requires deployment + quota)
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None) -> None:
        self._provider = settings.embedding.provider
        self._api_key = api_key
        self.model_name = model or settings.embedding.resolved_model_name
        self._client = None  # lazy

    def _get_client(self):
        """Create the appropriate OpenAI client for the selected provider."""
        if self._client is not None:
            return self._client

        from openai import AsyncAzureOpenAI, AsyncOpenAI

        if self._provider == ProviderType.OPENAI:
            api_key = self._api_key or settings.embedding.openai_api_key
            if not api_key:
                raise EmbeddingError(
                    "OPENAI_API_KEY is required when EMBEDDING_PROVIDER=openai",
                    model=self.model_name,
                )
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=settings.embedding.openai_base_url,
                timeout=settings.embedding.timeout,
                # Retries are owned by RetryPolicy
                max_retries=0,
            )
            return self._client

        if self._provider == ProviderType.AZURE:
            api_key = self._api_key or settings.embedding.azure_openai_api_key
            if not (
                settings.embedding.azure_openai_endpoint
                and api_key
                and settings.embedding.embedding_deployment_name
            ):
                raise EmbeddingError(
                    "Azure embeddings require AZURE_OPENAI_ENDPOINT, AZURE_OPENAI_API_KEY, and EMBEDDING_DEPLOYMENT_NAME",
                    model=self.model_name,
                )
            self._client = AsyncAzureOpenAI(
                api_key=api_key,
                azure_endpoint=settings.embedding.azure_openai_endpoint,
                api_version=settings.embedding.azure_openai_api_version,
                timeout=settings.embedding.timeout,
                max_retries=0,
            )
            return self._client

        raise EmbeddingError(f"Unsupported embedding provider: {self._provider}", model=self.model_name)

    def ensure_ready(self) -> None:
        self._get_client()

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        client = self._get_client()
        try:
            resp = await client.embeddings.create(model=self.model_name, input=texts)
        except Exception as e:
            raise EmbeddingError(f"Embedding request failed: {e}", model=self.model_name) from e
        # The API may return items out of order; index restores input order
        return [d.embedding for d in sorted(resp.data, key=lambda d: d.index)]


def build_embedding_text(chunk: Chunk) -> str:
    """Chunk text followed by its keyword, entity and topic lines."""
    meta = ""
    if chunk.metadata.keywords:
        meta += f"\nKeywords: {', '.join(chunk.metadata.keywords)}"
    if chunk.metadata.entities:
        meta += f"\nEntities: {', '.join(chunk.metadata.entities)}"
    if chunk.metadata.topics:
        meta += f"\nTopics: {', '.join(chunk.metadata.topics)}"
    return f"{chunk.page_content}\n{meta}"


class EmbeddingService:
    """Generate embeddings for chunks and write them back to the document store."""

    def __init__(self, provider: Optional[EmbeddingProvider] = None) -> None:
        self._provider = provider

    @property
    def provider(self) -> EmbeddingProvider:
        if self._provider is None:
            self._provider = OpenAIEmbeddingProvider()
        return self._provider

    async def generate_embeddings(
        self,
        chunks: Sequence[Chunk],
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
    ) -> List[List[float]]:
        """
        Embed every chunk in a single provider call.

        Args:
            chunks: Chunks to embed
            api_key: Overrides the configured provider key for this call
            model: Overrides the configured embedding model for this call
            retries: Retries after the first attempt (defaults to EMBEDDING_MAX_RETRIES)
            initial_delay: Initial backoff in seconds (defaults to EMBEDDING_INITIAL_DELAY)

        Returns:
            One vector per chunk, aligned with the input order
        """
        if not chunks:
            return []

        provider = self.provider
        if api_key or model:
            provider = OpenAIEmbeddingProvider(api_key=api_key, model=model)
        model_name = provider.model_name

        texts = [build_embedding_text(c) for c in chunks]
        policy = RetryPolicy(
            retries=settings.embedding.max_retries if retries is None else retries,
            initial_delay=settings.embedding.embedding_initial_delay if initial_delay is None else initial_delay,
        )

        # Missing credentials are not transient
        provider.ensure_ready()
        logger.info(f"Generating embeddings: model={model_name}, chunks={len(chunks)}")
        vectors = await policy.run(lambda: provider.embed_documents(texts))

        if len(vectors) != len(chunks):
            raise EmbeddingError(
                "Embedding response size mismatch",
                model=model_name,
                details={"expected": len(chunks), "got": len(vectors)},
            )

        expected_dim = settings.embedding.embedding_dimension
        for vector in vectors:
            if expected_dim is not None and len(vector) != expected_dim:
                raise EmbeddingError(
                    "Embedding dimension mismatch",
                    model=model_name,
                    details={"expected_dimension": expected_dim, "actual_dimension": len(vector)},
                )

        logger.info(f"Embeddings generated successfully: count={len(vectors)}, dimension={len(vectors[0])}")
        return vectors

    async def generate_embeddings_batched(
        self,
        chunks: Sequence[Chunk],
        batch_size: Optional[int] = None,
        **kwargs,
    ) -> List[List[float]]:
        """Embed chunks in provider-sized batches; each batch is one retried call."""
        batch_size = max(1, batch_size or settings.embedding.batch_size)
        out: List[List[float]] = []
        for start in range(0, len(chunks), batch_size):
            out.extend(await self.generate_embeddings(chunks[start : start + batch_size], **kwargs))
        return out

    async def update_embeddings_in_db(
        self,
        chunks: Sequence[Chunk],
        vectors: Sequence[List[float]],
        gateway: "PersistenceGateway",
        concurrency_limit: int = 2,
        batch_size: int = 250,
        retries: int = 5,
        initial_delay: float = 1.0,
    ) -> EmbeddingUpdateReport:
        """
        Write embeddings back to their chunks.

        Pairs are split into batches of ``batch_size``. At most
        ``concurrency_limit`` batches run at once; inside a batch every write
        runs concurrently and is retried on its own. A failing batch is logged
        and recorded in the report without cancelling its siblings.

        Raises:
            ValidationError: If chunks and vectors differ in length (nothing is written)
        """
        if len(chunks) != len(vectors):
            raise ValidationError(
                f"Mismatch: {len(chunks)} chunks but {len(vectors)} embeddings",
                errors={"chunks": len(chunks), "vectors": len(vectors)},
            )

        report = EmbeddingUpdateReport(total=len(vectors))
        if not vectors:
            return report

        batch_size = max(1, batch_size)
        batches = [
            (list(chunks[start : start + batch_size]), list(vectors[start : start + batch_size]))
            for start in range(0, len(vectors), batch_size)
        ]
        logger.info(f"Updating embeddings: total={len(vectors)}, batches={len(batches)}")

        semaphore = asyncio.Semaphore(max(1, concurrency_limit))
        policy = RetryPolicy(retries=retries, initial_delay=initial_delay)

        async def write_one(chunk: Chunk, vector: List[float]) -> None:
            await policy.run(lambda: gateway.update_chunk_embedding(chunk.unique_chunk_id, vector))

        async def update_batch(index: int, batch_chunks: List[Chunk], batch_vectors: List[List[float]]) -> None:
            async with semaphore:
                results = await asyncio.gather(
                    *(write_one(c, v) for c, v in zip(batch_chunks, batch_vectors)),
                    return_exceptions=True,
                )
            failed = [c.unique_chunk_id for c, r in zip(batch_chunks, results) if isinstance(r, BaseException)]
            report.updated += len(batch_chunks) - len(failed)
            if failed:
                first_error = next(r for r in results if isinstance(r, BaseException))
                logger.error(
                    f"Error updating embedding batch {index}: {len(failed)}/{len(batch_chunks)} writes failed: {first_error}"
                )
                report.failed_chunk_ids.extend(failed)
                report.failed_batches.append(index)
            else:
                logger.debug(f"Updated embedding batch {index}: {len(batch_chunks)} embeddings")

        await asyncio.gather(
            *(update_batch(i + 1, batch_chunks, batch_vectors) for i, (batch_chunks, batch_vectors) in enumerate(batches))
        )
        report.failed_batches.sort()

        if report.is_partial:
            logger.warning(f"Embedding update finished with failures: updated={report.updated}/{report.total}")
        else:
            logger.info(f"All chunk embeddings updated: {report.updated}")
        return report
