"""Health check endpoints."""

import httpx
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from semantic_ingestion.config import get_settings
from semantic_ingestion.utils.logging import get_logger

logger = get_logger("health")
settings = get_settings()

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """
    Health check endpoint.

    Returns basic service health status. This endpoint does not check
    external dependencies and will always return healthy if the service is running.
    """
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Checks:
    - Document store (reachable over HTTP)
    - Embeddings (provider credentials configured)
    - Graph worker (client initialized; non-critical)

    Returns 503 if any critical dependency is unavailable.
    """
    logger.debug("Readiness check requested")

    checks = {
        "store": False,
        "embeddings": False,
        "graph_worker": False,
    }

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(settings.store.url)
            checks["store"] = response.status_code < 500
    except Exception as e:
        logger.warning(f"Store connection check failed: {e}")
        checks["store"] = False

    checks["embeddings"] = settings.embedding.is_configured
    if not checks["embeddings"]:
        logger.warning(
            "Embeddings configuration check failed: missing required env vars",
            extra={"provider": settings.embedding.provider.value},
        )

    checks["graph_worker"] = getattr(request.app.state, "graph_worker", None) is not None

    critical_ready = checks["store"] and checks["embeddings"]
    body = {
        "status": "ready" if critical_ready else "not_ready",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
        "checks": checks,
    }

    if not critical_ready:
        logger.warning(f"Readiness check failed (critical): {checks}")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)

    if not all(checks.values()):
        logger.warning(f"Readiness check partial (non-critical): {checks}")
    return body
