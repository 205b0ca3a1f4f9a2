"""Unit tests for EmbeddingService."""

import asyncio
from types import SimpleNamespace
from typing import List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from semantic_ingestion.config import EmbeddingProvider as ProviderType
from semantic_ingestion.config import get_settings
from semantic_ingestion.models.chunk import Chunk, ChunkMetadata
from semantic_ingestion.services.embedding_service import (
    EmbeddingProvider,
    EmbeddingService,
    OpenAIEmbeddingProvider,
    build_embedding_text,
)
from semantic_ingestion.utils.errors import EmbeddingError, ValidationError
from semantic_ingestion.utils.retry import RetryPolicy

DIM = get_settings().embedding.embedding_dimension or 4


class FakeProvider(EmbeddingProvider):
    model_name = "fake-embedding"

    def __init__(self, failures: int = 0, dimension: int = DIM, drop_last: bool = False):
        self.calls: List[List[str]] = []
        self.failures = failures
        self.dimension = dimension
        self.drop_last = drop_last

    async def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if len(self.calls) <= self.failures:
            raise EmbeddingError("rate limited", model=self.model_name)
        vectors = [[float(len(t))] * self.dimension for t in texts]
        return vectors[:-1] if self.drop_last else vectors


def make_chunks(n: int) -> List[Chunk]:
    return [Chunk(chunk_number=i + 1, page_content=f"chunk text {i}" + "!" * i) for i in range(n)]


class TestBuildEmbeddingText:
    def test_with_metadata(self):
        chunk = Chunk(
            chunk_number=1,
            page_content="Body",
            metadata=ChunkMetadata(keywords=["alpha", "beta"], entities=["Jane Doe"], topics=["AI"]),
        )
        assert build_embedding_text(chunk) == "Body\n\nKeywords: alpha, beta\nEntities: Jane Doe\nTopics: AI"

    def test_without_metadata(self):
        assert build_embedding_text(Chunk(chunk_number=1, page_content="Body")) == "Body\n"

    def test_skips_empty_lists(self):
        chunk = Chunk(chunk_number=1, page_content="Body", metadata=ChunkMetadata(topics=["Legal"]))
        assert build_embedding_text(chunk) == "Body\n\nTopics: Legal"


class TestGenerateEmbeddings:
    @pytest.mark.asyncio
    async def test_empty_input_skips_provider(self):
        provider = FakeProvider()
        assert await EmbeddingService(provider).generate_embeddings([]) == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_single_call_order_preserved(self):
        provider = FakeProvider()
        chunks = make_chunks(3)

        vectors = await EmbeddingService(provider).generate_embeddings(chunks)

        assert len(provider.calls) == 1
        assert provider.calls[0] == [build_embedding_text(c) for c in chunks]
        assert [v[0] for v in vectors] == [float(len(build_embedding_text(c))) for c in chunks]

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        provider = FakeProvider(failures=2)

        vectors = await EmbeddingService(provider).generate_embeddings(make_chunks(2), retries=3, initial_delay=0)

        assert len(vectors) == 2
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_retry_budget(self):
        provider = FakeProvider(failures=10)

        with pytest.raises(EmbeddingError):
            await EmbeddingService(provider).generate_embeddings(make_chunks(1), retries=1, initial_delay=0)

        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_count_mismatch_raises(self):
        with pytest.raises(EmbeddingError) as exc_info:
            await EmbeddingService(FakeProvider(drop_last=True)).generate_embeddings(make_chunks(3))
        assert exc_info.value.details["expected"] == 3

    @pytest.mark.asyncio
    async def test_dimension_mismatch_raises(self):
        settings = get_settings()
        with patch.object(settings.embedding, "embedding_dimension", 8):
            with pytest.raises(EmbeddingError):
                await EmbeddingService(FakeProvider(dimension=3)).generate_embeddings(make_chunks(1))

    @pytest.mark.asyncio
    async def test_api_key_override_builds_dedicated_provider(self):
        override = FakeProvider()
        with patch(
            "semantic_ingestion.services.embedding_service.OpenAIEmbeddingProvider", return_value=override
        ) as provider_class:
            await EmbeddingService(FakeProvider()).generate_embeddings(make_chunks(1), api_key="sk-test")

        provider_class.assert_called_once_with(api_key="sk-test", model=None)
        assert len(override.calls) == 1

    @pytest.mark.asyncio
    async def test_batched_splits_provider_calls(self):
        provider = FakeProvider()
        vectors = await EmbeddingService(provider).generate_embeddings_batched(make_chunks(5), batch_size=2)

        assert [len(call) for call in provider.calls] == [2, 2, 1]
        assert len(vectors) == 5


class TestOpenAIEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_restores_input_order(self):
        provider = OpenAIEmbeddingProvider(api_key="sk-test", model="text-embedding-3-small")
        client = MagicMock()
        client.embeddings.create = AsyncMock(
            return_value=SimpleNamespace(
                data=[SimpleNamespace(index=1, embedding=[2.0]), SimpleNamespace(index=0, embedding=[1.0])]
            )
        )
        provider._client = client

        assert await provider.embed_documents(["a", "b"]) == [[1.0], [2.0]]
        client.embeddings.create.assert_awaited_once_with(model="text-embedding-3-small", input=["a", "b"])

    @pytest.mark.asyncio
    async def test_wraps_client_errors(self):
        provider = OpenAIEmbeddingProvider(api_key="sk-test")
        client = MagicMock()
        client.embeddings.create = AsyncMock(side_effect=RuntimeError("429"))
        provider._client = client

        with pytest.raises(EmbeddingError):
            await provider.embed_documents(["a"])


class TestUpdateEmbeddingsInDb:
    @pytest.mark.asyncio
    async def test_length_mismatch_writes_nothing(self, gateway):
        chunks = make_chunks(3)
        await gateway.insert_chunks("proj-1", chunks)

        with pytest.raises(ValidationError):
            await EmbeddingService(FakeProvider()).update_embeddings_in_db(chunks, [[1.0], [2.0]], gateway)

        assert gateway.embedding_writes == []

    @pytest.mark.asyncio
    async def test_writes_every_embedding(self, gateway):
        chunks = make_chunks(5)
        await gateway.insert_chunks("proj-1", chunks)
        vectors = [[float(i)] for i in range(5)]

        report = await EmbeddingService(FakeProvider()).update_embeddings_in_db(
            chunks, vectors, gateway, batch_size=2, initial_delay=0
        )

        assert report.total == 5
        assert report.updated == 5
        assert not report.is_partial
        for chunk, vector in zip(chunks, vectors):
            assert gateway.chunks[chunk.unique_chunk_id].embedding == vector

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_abort_siblings(self, gateway):
        chunks = make_chunks(4)
        await gateway.insert_chunks("proj-1", chunks)
        gateway.failing_embedding_ids.add(chunks[1].unique_chunk_id)

        report = await EmbeddingService(FakeProvider()).update_embeddings_in_db(
            chunks, [[1.0]] * 4, gateway, batch_size=2, retries=1, initial_delay=0
        )

        assert report.failed_chunk_ids == [chunks[1].unique_chunk_id]
        assert report.failed_batches == [1]
        assert report.updated == 3
        assert gateway.chunks[chunks[3].unique_chunk_id].embedding == [1.0]

    @pytest.mark.asyncio
    async def test_unknown_chunk_is_not_retried(self, gateway):
        chunks = make_chunks(1)
        gateway.update_chunk_embedding = AsyncMock(wraps=gateway.update_chunk_embedding)

        report = await EmbeddingService(FakeProvider()).update_embeddings_in_db(
            chunks, [[1.0]], gateway, retries=3, initial_delay=0
        )

        assert report.failed_chunk_ids == [chunks[0].unique_chunk_id]
        assert gateway.update_chunk_embedding.await_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrency_limit", [1, 2])
    async def test_concurrency_is_bounded(self, gateway, concurrency_limit):
        chunks = make_chunks(6)
        active = {"now": 0, "peak": 0}

        async def slow_update(unique_chunk_id, embedding):
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            await asyncio.sleep(0.01)
            active["now"] -= 1

        gateway.update_chunk_embedding = slow_update

        report = await EmbeddingService(FakeProvider()).update_embeddings_in_db(
            chunks, [[1.0]] * 6, gateway, concurrency_limit=concurrency_limit, batch_size=1
        )

        assert report.updated == 6
        assert active["peak"] == concurrency_limit


class TestProviderConfiguration:
    @pytest.mark.asyncio
    async def test_missing_api_key_fails_without_retrying(self):
        embedding_settings = get_settings().embedding
        with patch.object(embedding_settings, "embedding_provider", ProviderType.OPENAI), patch.object(
            embedding_settings, "openai_api_key", None
        ):
            provider = OpenAIEmbeddingProvider()
            with patch.object(provider, "_get_client", wraps=provider._get_client) as get_client, patch(
                "semantic_ingestion.services.embedding_service.RetryPolicy"
            ) as policy_class:
                with pytest.raises(EmbeddingError) as exc_info:
                    await EmbeddingService(provider).generate_embeddings(make_chunks(2), retries=5)

        assert "OPENAI_API_KEY" in exc_info.value.message
        assert get_client.call_count == 1
        policy_class.return_value.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_azure_configuration_fails_without_retrying(self):
        embedding_settings = get_settings().embedding
        sleep = AsyncMock()
        with patch.object(embedding_settings, "embedding_provider", ProviderType.AZURE), patch.object(
            embedding_settings, "azure_openai_endpoint", None
        ):
            provider = OpenAIEmbeddingProvider()
            provider.embed_documents = AsyncMock(wraps=provider.embed_documents)
            with patch(
                "semantic_ingestion.services.embedding_service.RetryPolicy",
                side_effect=lambda **kwargs: RetryPolicy(sleep=sleep, **kwargs),
            ):
                with pytest.raises(EmbeddingError):
                    await EmbeddingService(provider).generate_embeddings(make_chunks(1), retries=5)

        provider.embed_documents.assert_not_called()
        sleep.assert_not_called()
