"""Document processing endpoints."""

from fastapi import APIRouter, BackgroundTasks, Request, status

from semantic_ingestion.models.message import ProcessDocumentRequest
from semantic_ingestion.utils.errors import IngestionException
from semantic_ingestion.utils.logging import get_logger
from semantic_ingestion.workers.ingestion_worker import IngestionWorker

logger = get_logger("documents")

router = APIRouter(prefix="/documents", tags=["documents"])


async def run_processing(worker: IngestionWorker, payload: ProcessDocumentRequest) -> None:
    """Background entry point; the worker has already recorded any failure on the document."""
    try:
        await worker.process_document(payload)
    except IngestionException as e:
        logger.error(f"Background processing failed: document_id={payload.document_id} - {e.message} ({e.code})")


@router.post("/process", status_code=status.HTTP_202_ACCEPTED)
async def process_document(payload: ProcessDocumentRequest, request: Request, background_tasks: BackgroundTasks):
    """
    Queue an uploaded document for ingestion.

    Processing runs after the response is sent; progress is reported on the
    document record in the store.
    """
    worker: IngestionWorker = request.app.state.ingestion_worker
    background_tasks.add_task(run_processing, worker, payload)
    logger.info(f"Document accepted for processing: document_id={payload.document_id}, file_id={payload.file_id}")
    return {"status": "accepted", "documentId": payload.document_id}
