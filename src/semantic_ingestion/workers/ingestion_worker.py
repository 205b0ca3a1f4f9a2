"""Ingestion worker running the document processing pipeline."""

import asyncio
from typing import List, Optional

from semantic_ingestion.clients.store_client import PersistenceGateway
from semantic_ingestion.config import get_settings
from semantic_ingestion.models.chunk import Chunk
from semantic_ingestion.models.document import ParsedDocument
from semantic_ingestion.models.message import ProcessDocumentRequest, ProcessingResult, ProcessingStatus
from semantic_ingestion.services.chunking_service import ChunkingService
from semantic_ingestion.services.embedding_service import EmbeddingService
from semantic_ingestion.services.graph_service import GraphService
from semantic_ingestion.services.parser_service import ParserService
from semantic_ingestion.services.storage_service import StorageService
from semantic_ingestion.utils.errors import IngestionException, NotFoundError
from semantic_ingestion.utils.logging import get_logger, log_error, set_document_id
from semantic_ingestion.utils.retry import RetryPolicy

logger = get_logger("ingestion_worker")
settings = get_settings()


class IngestionWorker:
    """
    Worker for processing uploaded documents.

    Processing pipeline:
    1. Download file through a signed store URL
    2. Parse document page by page
    3. Segment pages into chunks with metadata
    4. Insert chunks under the parent project
    5. Generate embeddings
    6. Write embeddings back to their chunks
    7. Extend the similarity graph with the new chunks
    8. Report progress and completion to the store
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        graph_service: Optional[GraphService] = None,
        storage_service: Optional[StorageService] = None,
        parser_service: Optional[ParserService] = None,
        chunking_service: Optional[ChunkingService] = None,
        embedding_service: Optional[EmbeddingService] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.gateway = gateway
        self.retry_policy = retry_policy or RetryPolicy()
        self.graph_service = graph_service
        self.storage_service = storage_service or StorageService(gateway, retry_policy=self.retry_policy)
        self.parser_service = parser_service or ParserService()
        self.chunking_service = chunking_service or ChunkingService()
        self.embedding_service = embedding_service or EmbeddingService()

    async def _update_status(self, document_id: str, status: ProcessingStatus) -> None:
        await self.retry_policy.run(lambda: self.gateway.update_processing_status(document_id, status))

    def build_chunks(self, document: ParsedDocument, document_id: str) -> List[Chunk]:
        """
        Segment every page with document-wide chunk parameters.

        Chunk numbers and the heading path run across pages; each chunk
        carries its page number and the document's title and author.
        """
        params = self.chunking_service.choose_params(document.total_chars)
        logger.info(
            f"Adaptive chunking: total_chars={document.total_chars}, "
            f"chunk_size={params.chunk_size}, chunk_overlap={params.chunk_overlap}"
        )

        chunks: List[Chunk] = []
        headings: List[str] = []
        for page in document.pages:
            page_chunks = self.chunking_service.segment(
                page.text,
                params.chunk_size,
                params.chunk_overlap,
                document_id=document_id,
                start_number=len(chunks) + 1,
                headings=headings,
            )
            if page_chunks:
                headings = page_chunks[-1].metadata.headings
            for chunk in page_chunks:
                chunk.metadata.page_number = page.page_number
                chunk.metadata.doc_title = document.metadata.title
                chunk.metadata.doc_author = document.metadata.author
            chunks.extend(page_chunks)
        return chunks

    async def insert_chunks(self, parent_id: str, chunks: List[Chunk]) -> None:
        """Insert chunks in bounded, concurrently running batches."""
        batch_size = max(1, settings.store.insert_batch_size)
        batches = [chunks[i : i + batch_size] for i in range(0, len(chunks), batch_size)]
        semaphore = asyncio.Semaphore(max(1, settings.store.insert_concurrency))
        logger.info(f"Inserting chunks: total={len(chunks)}, batches={len(batches)}")

        async def insert_batch(batch: List[Chunk]) -> None:
            async with semaphore:
                await self.retry_policy.run(lambda: self.gateway.insert_chunks(parent_id, batch))

        await asyncio.gather(*(insert_batch(batch) for batch in batches))

    async def process_document(self, request: ProcessDocumentRequest) -> ProcessingResult:
        """
        Run the full pipeline for one document.

        Args:
            request: Document and file identifiers

        Returns:
            Summary of the run

        Raises:
            IngestionException: If processing fails; the document is marked failed first
        """
        document_id = request.document_id
        set_document_id(document_id)
        logger.info(
            f"Processing document: document_id={document_id}, file_id={request.file_id}, "
            f"filename={request.filename}, type={request.file_type}"
        )

        try:
            await self._update_status(document_id, ProcessingStatus(progress=0, is_processing=True))

            file_data = await self.storage_service.download_file(request.file_id)
            document = await self.parser_service.parse_document(
                file_data=file_data,
                file_type=request.file_type,
                filename=request.filename,
            )
            await self._update_status(document_id, ProcessingStatus(progress=30))

            chunks = self.build_chunks(document, document_id)
            logger.info(f"Document segmented: pages={len(document.pages)}, chunks={len(chunks)}")
            await self._update_status(document_id, ProcessingStatus(progress=50))

            parent_id = await self.retry_policy.run(lambda: self.gateway.get_parent_project_id(document_id))
            if not parent_id:
                raise NotFoundError("Parent project", document_id)

            await self.insert_chunks(parent_id, chunks)
            await self._update_status(document_id, ProcessingStatus(progress=60))

            vectors = await self.embedding_service.generate_embeddings_batched(chunks)
            for chunk, vector in zip(chunks, vectors):
                chunk.embedding = vector
            await self._update_status(document_id, ProcessingStatus(progress=90))

            report = await self.embedding_service.update_embeddings_in_db(
                chunks,
                vectors,
                self.gateway,
                concurrency_limit=settings.embedding.embedding_update_concurrency,
                batch_size=settings.embedding.embedding_update_batch_size,
                retries=settings.embedding.max_retries,
                initial_delay=settings.embedding.embedding_initial_delay,
            )
            if report.is_partial:
                logger.warning(
                    f"Some embeddings were not stored: failed={len(report.failed_chunk_ids)}, "
                    f"batches={report.failed_batches}, chunk_ids={report.failed_chunk_ids}"
                )

            result = ProcessingResult(
                document_id=document_id,
                total_chunks=len(chunks),
                total_embeddings=len(vectors),
                failed_chunk_ids=report.failed_chunk_ids,
            )

            if self.graph_service is not None and settings.graph.enabled:
                failed = set(report.failed_chunk_ids)
                stored_ids = [c.unique_chunk_id for c in chunks if c.unique_chunk_id not in failed]
                try:
                    graph = await self.graph_service.update_graph_for_chunks(stored_ids)
                    result.graph_nodes = graph.nodes
                    result.graph_links = graph.links
                except IngestionException as e:
                    # The graph is derived data; a later rebuild restores it
                    log_error(e, {"document_id": document_id, "step": "graph_update"})

            await self._update_status(document_id, ProcessingStatus.completed())
            logger.info(
                f"Document processed: document_id={document_id}, chunks={result.total_chunks}, "
                f"embeddings={result.total_embeddings}, graph_nodes={result.graph_nodes}, "
                f"graph_links={result.graph_links}"
            )
            return result

        except IngestionException as e:
            logger.error(
                f"Ingestion pipeline failed: document_id={document_id} - {e.message} ({e.code})",
                exc_info=True,
            )
            await self._mark_failed(document_id, e.message)
            raise
        except Exception as e:
            logger.error(
                f"Unexpected error processing document: document_id={document_id} - {e}",
                exc_info=True,
            )
            await self._mark_failed(document_id, str(e))
            raise IngestionException(
                f"Failed to process document: {document_id}",
                status_code=500,
            ) from e
        finally:
            set_document_id(None)

    async def _mark_failed(self, document_id: str, error_message: str) -> None:
        try:
            await self.gateway.update_processing_status(document_id, ProcessingStatus.failed(error_message))
        except Exception as update_error:
            logger.error(
                f"Failed to update status to failed: document_id={document_id} - {update_error}",
                exc_info=True,
            )
