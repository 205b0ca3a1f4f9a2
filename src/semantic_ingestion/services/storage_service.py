"""File download through signed URLs issued by the document store."""

from typing import Optional

import httpx

from semantic_ingestion.clients.store_client import PersistenceGateway
from semantic_ingestion.config import get_settings
from semantic_ingestion.utils.errors import IngestionException, StorageError
from semantic_ingestion.utils.logging import get_logger
from semantic_ingestion.utils.retry import RetryPolicy

logger = get_logger("storage_service")
settings = get_settings()


class StorageService:
    """
    Download uploaded files.

    The store resolves a file id into a short-lived signed URL; the bytes are
    then fetched directly from that URL. Both steps are retried.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
    ):
        self.gateway = gateway
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout or settings.store.download_timeout

    async def _fetch(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPStatusError as e:
            raise StorageError(
                f"File download failed with status {e.response.status_code}",
                details={"status_code": e.response.status_code},
            ) from e
        except httpx.RequestError as e:
            raise StorageError(f"File download failed: {e}") from e

    async def download_file(self, file_id: str) -> bytes:
        """
        Download a stored file.

        Args:
            file_id: Storage identifier of the file

        Returns:
            File content as bytes

        Raises:
            NotFoundError: If the store has no such file
            StorageError: If download fails after retries
        """
        file_url = await self.retry_policy.run(lambda: self.gateway.get_file_url(file_id))
        logger.info(f"Downloading file: file_id={file_id}")

        try:
            content = await self.retry_policy.run(lambda: self._fetch(file_url.url))
        except IngestionException:
            raise
        except Exception as e:
            logger.error(f"Failed to download file {file_id}: {e}", exc_info=True)
            raise StorageError(f"Failed to download file: {str(e)}") from e

        logger.info(f"Downloaded file: file_id={file_id}, size={len(content)} bytes")
        return content
