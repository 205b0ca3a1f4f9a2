"""Tests for the similarity graph worker and its async client."""

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from unittest.mock import patch

import pytest

from semantic_ingestion.models.graph import EmbeddedChunk, GraphNode, SimilarityEdge
from semantic_ingestion.models.message import WorkerEnvelope, WorkerMessageType
from semantic_ingestion.utils.errors import GraphBuildError
from semantic_ingestion.workers.graph_worker import GraphWorkerClient, handle_message


def wire_chunk(chunk_id, embedding, **metadata):
    return EmbeddedChunk(id=chunk_id, embedding=embedding, metadata=metadata).model_dump(mode="json", by_alias=True)


@pytest.fixture
def chunks():
    return [
        EmbeddedChunk(id="a", embedding=[1.0, 0.0]),
        EmbeddedChunk(id="b", embedding=[0.9, 0.1]),
        EmbeddedChunk(id="c", embedding=[0.0, 1.0]),
    ]


@pytest.fixture
def client():
    executor = ThreadPoolExecutor(max_workers=1)
    yield GraphWorkerClient(executor=executor)
    executor.shutdown(wait=True)


class TestHandleMessage:
    def test_calculate_similarities(self):
        response = handle_message(
            {
                "type": "CALCULATE_SIMILARITIES",
                "correlation_id": "req-1",
                "data": {
                    "embeddings": [wire_chunk("a", [1.0, 0.0]), wire_chunk("b", [1.0, 0.1])],
                    "topK": 1,
                },
            }
        )

        assert response["type"] == "SIMILARITIES_CALCULATED"
        assert response["correlation_id"] == "req-1"
        assert {(e["source"], e["target"]) for e in response["data"]} == {("a", "b"), ("b", "a")}

    def test_build_graph(self):
        response = handle_message(
            {
                "type": "BUILD_GRAPH",
                "correlation_id": "req-2",
                "data": {"embeddings": [wire_chunk("a", [1.0], keywords=["alpha"], topics=["AI"])]},
            }
        )

        assert response["type"] == "NODES_BUILT"
        assert response["correlation_id"] == "req-2"
        node = response["data"]["nodes"][0]
        assert (node["id"], node["label"], node["group"]) == ("a", "alpha", "AI")

    def test_unknown_type_is_ignored(self):
        assert handle_message({"type": "REINDEX", "correlation_id": "req-3", "data": {}}) is None

    def test_invalid_payload_returns_error_envelope(self):
        response = handle_message(
            {"type": "CALCULATE_SIMILARITIES", "correlation_id": "req-4", "data": {"embeddings": [], "topK": 0}}
        )

        assert response["type"] == "ERROR"
        assert response["correlation_id"] == "req-4"
        assert response["data"]["message"]

    def test_dimension_mismatch_returns_error_envelope(self):
        response = handle_message(
            {
                "type": "CALCULATE_SIMILARITIES",
                "correlation_id": "req-5",
                "data": {"embeddings": [wire_chunk("a", [1.0, 0.0]), wire_chunk("b", [1.0])], "topK": 1},
            }
        )

        assert response["type"] == "ERROR"
        assert response["data"]["errorType"] == "ValueError"


class TestGraphWorkerClient:
    @pytest.mark.asyncio
    async def test_calculate_similarities(self, client, chunks):
        edges = await client.calculate_similarities(chunks, top_k=1)

        assert all(isinstance(e, SimilarityEdge) for e in edges)
        assert [(e.source, e.target) for e in edges] == [("a", "b"), ("b", "a"), ("c", "b")]

    @pytest.mark.asyncio
    async def test_calculate_similarities_for_sources(self, client, chunks):
        edges = await client.calculate_similarities(chunks, top_k=2, min_similarity=0.5, source_ids=["c"])

        assert edges == []

    @pytest.mark.asyncio
    async def test_build_graph(self, client, chunks):
        nodes = await client.build_graph(chunks)

        assert all(isinstance(n, GraphNode) for n in nodes)
        assert [n.id for n in nodes] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_worker_error_raises_graph_build_error(self, client):
        mismatched = [EmbeddedChunk(id="a", embedding=[1.0, 0.0]), EmbeddedChunk(id="b", embedding=[1.0])]

        with pytest.raises(GraphBuildError) as exc_info:
            await client.calculate_similarities(mismatched, top_k=1)

        assert exc_info.value.details["error_type"] == "ValueError"

    @pytest.mark.asyncio
    async def test_correlation_mismatch_raises(self, client):
        stale = {"type": "NODES_BUILT", "correlation_id": "someone-else", "data": {"nodes": []}}
        with patch("semantic_ingestion.workers.graph_worker.handle_message", return_value=stale):
            with pytest.raises(GraphBuildError):
                await client.build_graph([])

    @pytest.mark.asyncio
    async def test_ignored_message_returns_none(self, client):
        response = await client.request(WorkerEnvelope(type="REINDEX", data={}))

        assert response is None

    @pytest.mark.asyncio
    async def test_response_echoes_correlation_id(self, client):
        request = WorkerEnvelope(type=WorkerMessageType.BUILD_GRAPH.value, data={"embeddings": []})

        response = await client.request(request)

        assert response.correlation_id == request.correlation_id

    @pytest.mark.asyncio
    async def test_process_pool(self, chunks):
        executor = ProcessPoolExecutor(max_workers=1)
        try:
            async with GraphWorkerClient(executor=executor) as worker:
                edges = await worker.calculate_similarities(chunks, top_k=1)
        finally:
            executor.shutdown(wait=True)

        assert len(edges) == 3

    def test_close_leaves_injected_executor_running(self):
        executor = ThreadPoolExecutor(max_workers=1)
        GraphWorkerClient(executor=executor).close()

        assert executor.submit(lambda: 42).result() == 42
        executor.shutdown()
