"""Custom exception classes for the ingestion pipeline."""

from typing import Any, Dict, Optional


class IngestionException(Exception):
    """Base exception for all ingestion errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class ParsingError(IngestionException):
    """Exception raised for document parsing errors."""

    def __init__(
        self,
        message: str = "Document parsing failed",
        file_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if file_type:
            error_details["file_type"] = file_type
        super().__init__(
            message=message,
            status_code=422,
            code="PARSING_ERROR",
            details=error_details,
        )


class ChunkingError(IngestionException):
    """Exception raised for invalid segmentation parameters."""

    def __init__(
        self,
        message: str = "Text chunking failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            code="CHUNKING_ERROR",
            details=details,
        )


class EmbeddingError(IngestionException):
    """Exception raised for embedding generation errors."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        model: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if model:
            error_details["model"] = model
        super().__init__(
            message=message,
            status_code=502,
            code="EMBEDDING_ERROR",
            details=error_details,
        )


class StoreError(IngestionException):
    """Exception raised when a document store call fails."""

    def __init__(
        self,
        message: str = "Document store operation failed",
        function: Optional[str] = None,
        status_code: int = 502,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if function:
            error_details["function"] = function
        super().__init__(
            message=message,
            status_code=status_code,
            code="STORE_ERROR",
            details=error_details,
        )


class StorageError(IngestionException):
    """Exception raised for file download errors."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=502,
            code="STORAGE_ERROR",
            details=details,
        )


class GraphBuildError(IngestionException):
    """Exception raised when the similarity worker reports a failure."""

    def __init__(
        self,
        message: str = "Similarity graph computation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            code="GRAPH_BUILD_ERROR",
            details=details,
        )


class ValidationError(IngestionException):
    """
    Inputs that contradict each other, e.g. chunks and vectors of different length.

    Raised before any side effect; RetryPolicy never retries it.
    """

    def __init__(
        self,
        message: str = "Pipeline inputs are inconsistent",
        errors: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = details or {}
        if errors:
            error_details["validation_errors"] = errors
        super().__init__(
            message=message,
            status_code=422,
            code="VALIDATION_ERROR",
            details=error_details,
        )


class NotFoundError(IngestionException):
    """
    A chunk, file or parent project the pipeline refers to is missing from the store.

    Not retried: the record will not appear by waiting.
    """

    def __init__(
        self,
        resource: str = "Store record",
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource} does not exist in the document store"
        if resource_id:
            message = f"{resource} {resource_id} does not exist in the document store"
        error_details = details or {}
        error_details["resource"] = resource
        if resource_id:
            error_details["resource_id"] = resource_id
        super().__init__(
            message=message,
            status_code=404,
            code="NOT_FOUND",
            details=error_details,
        )
