"""API v1 router aggregation."""

from fastapi import APIRouter

from semantic_ingestion.api.v1 import documents, graph, health

router = APIRouter(
    prefix="/api/v1",
    tags=["v1"],
    responses={
        404: {"description": "Not found"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)

router.include_router(health.router)
router.include_router(documents.router)
router.include_router(graph.router)


@router.get(
    "/",
    summary="API Information",
    description="Get API version and status information",
    tags=["v1"],
)
async def api_info():
    """Get API v1 version, status and endpoint map."""
    return {
        "version": "v1",
        "status": "active",
        "service": "semantic-ingestion",
        "endpoints": {
            "health": "/api/v1/health",
            "ready": "/api/v1/ready",
            "documents": {
                "process": "/api/v1/documents/process",
            },
            "graph": {
                "rebuild": "/api/v1/graph/rebuild",
            },
        },
    }
