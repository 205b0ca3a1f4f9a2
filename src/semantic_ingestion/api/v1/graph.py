"""Similarity graph endpoints."""

from fastapi import APIRouter, BackgroundTasks, Request, status

from semantic_ingestion.services.graph_service import GraphService
from semantic_ingestion.utils.errors import IngestionException
from semantic_ingestion.utils.logging import get_logger, log_error

logger = get_logger("graph")

router = APIRouter(prefix="/graph", tags=["graph"])


async def run_rebuild(graph_service: GraphService) -> None:
    try:
        result = await graph_service.rebuild_graph()
        logger.info(f"Graph rebuild finished: nodes={result.nodes}, links={result.links}")
    except IngestionException as e:
        log_error(e, {"step": "graph_rebuild"})


@router.post("/rebuild", status_code=status.HTTP_202_ACCEPTED)
async def rebuild_graph(request: Request, background_tasks: BackgroundTasks):
    """Recompute nodes and links for every embedded chunk in the background."""
    graph_service: GraphService = request.app.state.graph_service
    background_tasks.add_task(run_rebuild, graph_service)
    logger.info("Graph rebuild accepted")
    return {"status": "accepted"}
