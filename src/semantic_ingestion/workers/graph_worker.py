"""
Similarity graph worker.

The all-pairs similarity scan is CPU bound, so it runs in a separate process.
Caller and worker exchange plain-dict envelopes ``{type, correlation_id, data}``;
nothing else is shared.
"""

import asyncio
from concurrent.futures import Executor, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from typing import Any, Dict, Iterable, List, Optional, Sequence

from semantic_ingestion.config import get_settings
from semantic_ingestion.models.graph import EmbeddedChunk, GraphNode, SimilarityEdge
from semantic_ingestion.models.message import (
    BuildGraphData,
    CalculateSimilaritiesData,
    NodesBuiltData,
    WorkerEnvelope,
    WorkerErrorData,
    WorkerMessageType,
)
from semantic_ingestion.services import similarity_service
from semantic_ingestion.utils.errors import GraphBuildError
from semantic_ingestion.utils.logging import get_logger

logger = get_logger("graph_worker")


def _respond(request: Dict[str, Any], message_type: WorkerMessageType, data: Any) -> Dict[str, Any]:
    return WorkerEnvelope(
        type=message_type.value,
        correlation_id=request.get("correlation_id") or "",
        data=data,
    ).to_wire()


def handle_message(envelope: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Worker entry point. Runs inside the worker process.

    Returns the response envelope, or None for message types the worker does
    not understand. Failures come back as ERROR envelopes instead of raising
    across the process boundary.
    """
    message_type = envelope.get("type")
    data = envelope.get("data") or {}

    try:
        if message_type == WorkerMessageType.CALCULATE_SIMILARITIES.value:
            request = CalculateSimilaritiesData.model_validate(data)
            edges = similarity_service.calculate_similarities(
                request.embeddings,
                request.top_k,
                min_similarity=request.min_similarity,
                source_ids=request.source_ids,
            )
            return _respond(
                envelope,
                WorkerMessageType.SIMILARITIES_CALCULATED,
                [edge.model_dump(mode="json", by_alias=True) for edge in edges],
            )

        if message_type == WorkerMessageType.BUILD_GRAPH.value:
            request = BuildGraphData.model_validate(data)
            nodes = similarity_service.build_graph(request.embeddings)
            return _respond(
                envelope,
                WorkerMessageType.NODES_BUILT,
                NodesBuiltData(nodes=nodes).model_dump(mode="json", by_alias=True),
            )
    except Exception as e:
        return _respond(
            envelope,
            WorkerMessageType.ERROR,
            WorkerErrorData(message=str(e), error_type=type(e).__name__).model_dump(mode="json", by_alias=True),
        )

    return None


def _wire_embeddings(embeddings: Sequence[EmbeddedChunk]) -> List[Dict[str, Any]]:
    return [chunk.model_dump(mode="json", by_alias=True) for chunk in embeddings]


class GraphWorkerClient:
    """
    Async client for the graph worker process.

    Each request is tagged with a fresh correlation id and the response must
    echo it. Worker-side failures surface as ``GraphBuildError``.
    """

    def __init__(self, executor: Optional[Executor] = None, max_workers: Optional[int] = None):
        self._executor = executor
        self._owns_executor = executor is None
        self._max_workers = max_workers or get_settings().graph.worker_processes

    def _get_executor(self) -> Executor:
        if self._executor is None:
            logger.info(f"Starting graph worker pool: processes={self._max_workers}")
            self._executor = ProcessPoolExecutor(max_workers=self._max_workers)
        return self._executor

    async def request(self, envelope: WorkerEnvelope) -> Optional[WorkerEnvelope]:
        """
        Send one envelope to the worker and wait for its response.

        Returns:
            The response envelope, or None if the worker ignored the message

        Raises:
            GraphBuildError: If the worker failed, crashed or answered out of turn
        """
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(self._get_executor(), handle_message, envelope.to_wire())
        except BrokenProcessPool as e:
            # A dead pool cannot be reused
            self._executor = None if self._owns_executor else self._executor
            raise GraphBuildError("Graph worker process died", details={"type": envelope.type}) from e

        if raw is None:
            logger.warning(f"Graph worker ignored message type: {envelope.type}")
            return None

        response = WorkerEnvelope.model_validate(raw)
        if response.correlation_id != envelope.correlation_id:
            raise GraphBuildError(
                "Graph worker response does not match request",
                details={"expected": envelope.correlation_id, "got": response.correlation_id},
            )

        if response.type == WorkerMessageType.ERROR.value:
            error = WorkerErrorData.model_validate(response.data or {})
            raise GraphBuildError(
                f"Graph worker failed: {error.message}",
                details={"type": envelope.type, "error_type": error.error_type},
            )
        return response

    async def calculate_similarities(
        self,
        embeddings: Sequence[EmbeddedChunk],
        top_k: int,
        min_similarity: float = 0.0,
        source_ids: Optional[Iterable[str]] = None,
    ) -> List[SimilarityEdge]:
        data: Dict[str, Any] = {
            "embeddings": _wire_embeddings(embeddings),
            "topK": top_k,
            "minSimilarity": min_similarity,
        }
        if source_ids is not None:
            data["sourceIds"] = list(source_ids)
        response = await self.request(
            WorkerEnvelope(type=WorkerMessageType.CALCULATE_SIMILARITIES.value, data=data)
        )
        return [SimilarityEdge.model_validate(edge) for edge in response.data or []]

    async def build_graph(self, embeddings: Sequence[EmbeddedChunk]) -> List[GraphNode]:
        response = await self.request(
            WorkerEnvelope(
                type=WorkerMessageType.BUILD_GRAPH.value,
                data={"embeddings": _wire_embeddings(embeddings)},
            )
        )
        return NodesBuiltData.model_validate(response.data).nodes

    def close(self) -> None:
        if self._executor is not None and self._owns_executor:
            logger.info("Shutting down graph worker pool")
            self._executor.shutdown(wait=True)
            self._executor = None

    async def __aenter__(self) -> "GraphWorkerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
