"""FastAPI application entry point.

This module creates and configures the FastAPI application instance with:
- Application metadata and OpenAPI documentation
- Exception handlers
- API routers (v1)
- Health check endpoints (/health, /ready)
- Startup/shutdown lifecycle management (store gateway, graph worker pool)
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from semantic_ingestion.clients.store_client import DocumentStoreClient
from semantic_ingestion.config import get_settings
from semantic_ingestion.services.graph_service import GraphService
from semantic_ingestion.utils.errors import IngestionException
from semantic_ingestion.utils.logging import get_logger, log_error, setup_logging
from semantic_ingestion.workers.graph_worker import GraphWorkerClient
from semantic_ingestion.workers.ingestion_worker import IngestionWorker

# Set up logging first
setup_logging()
logger = get_logger("main")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Handles startup and shutdown of:
    - Document store gateway
    - Graph worker process pool
    """
    logger.info("Starting Semantic Ingestion service...")
    gateway = DocumentStoreClient()
    graph_worker = GraphWorkerClient()
    graph_service = GraphService(gateway, graph_worker)

    app.state.gateway = gateway
    app.state.graph_worker = graph_worker
    app.state.graph_service = graph_service
    app.state.ingestion_worker = IngestionWorker(gateway, graph_service=graph_service)

    logger.info(f"Semantic Ingestion service started: store={settings.store.url}")
    try:
        yield
    finally:
        logger.info("Shutting down Semantic Ingestion service...")
        graph_worker.close()
        logger.info("Semantic Ingestion service shut down")


app = FastAPI(
    title="Semantic Ingestion Service",
    description="Segments, enriches and embeds documents and maintains their similarity graph",
    version="0.1.0",
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_url="/openapi.json" if not settings.is_production else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure via environment in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=3600,
)


@app.exception_handler(IngestionException)
async def ingestion_exception_handler(request: Request, exc: IngestionException):
    """Handle IngestionException."""
    log_error(exc, context={"path": request.url.path, "method": request.method})
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    log_error(exc, context={"path": request.url.path, "method": request.method})
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "code": "HTTP_ERROR",
                "status_code": exc.status_code,
            }
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    log_error(exc, context={"path": request.url.path, "method": request.method})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "message": "Validation error",
                "code": "VALIDATION_ERROR",
                "status_code": 422,
                "details": exc.errors(),
            }
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    log_error(exc, context={"path": request.url.path, "method": request.method})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "code": "INTERNAL_ERROR",
                "status_code": 500,
            }
        },
    )


from semantic_ingestion.api.v1.health import health_check, readiness_check  # noqa: E402
from semantic_ingestion.api.v1.router import router as v1_router  # noqa: E402

app.include_router(v1_router)


# Root-level health checks for container orchestrators; also under /api/v1
@app.get("/health", tags=["health"], include_in_schema=False)
async def root_health_check():
    return await health_check()


@app.get("/ready", tags=["health"], include_in_schema=False)
async def root_readiness_check(request: Request):
    return await readiness_check(request)


@app.get("/", tags=["root"])
async def root():
    return {
        "service": "semantic-ingestion",
        "version": "0.1.0",
        "status": "running",
        "environment": settings.environment.value,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "semantic_ingestion.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload and settings.is_development,
        log_level=settings.log_level.lower(),
    )
