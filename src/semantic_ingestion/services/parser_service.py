"""Document parsing service for the supported file types."""

import io
import re
from typing import List, Optional

import PyPDF2

from semantic_ingestion.config import get_settings
from semantic_ingestion.models.document import DocumentMetadata, ParsedDocument, ParsedPage
from semantic_ingestion.services.metadata_service import MetadataService
from semantic_ingestion.utils.errors import ParsingError
from semantic_ingestion.utils.logging import get_logger

logger = get_logger("parser_service")
settings = get_settings()

_WORD = re.compile(r"\b\w+\b")


class ParserService:
    """
    Turn uploaded files into page-by-page text.

    Supports:
    - PDF (`.pdf`) - PyPDF2, one ParsedPage per PDF page
    - TXT (`.txt`) - Direct text extraction
    - MD (`.md`) - Markdown text
    """

    def __init__(self, metadata_service: Optional[MetadataService] = None):
        self.allowed_types = settings.allowed_file_types
        self.metadata_service = metadata_service or MetadataService()

    async def parse_document(
        self, file_data: bytes, file_type: str, filename: Optional[str] = None
    ) -> ParsedDocument:
        """
        Parse document based on file type.

        Args:
            file_data: Raw file bytes
            file_type: File type/extension (pdf, txt, md)
            filename: Optional filename for logging

        Returns:
            ParsedDocument with per-page text and metadata

        Raises:
            ParsingError: If parsing fails or file type is unsupported
        """
        file_type_lower = file_type.lower().strip(".")
        filename_str = filename or "unknown"

        if file_type_lower not in self.allowed_types:
            raise ParsingError(
                f"Unsupported file type: {file_type_lower}. "
                f"Allowed types: {', '.join(self.allowed_types)}",
                file_type=file_type_lower,
            )

        logger.info(f"Parsing document: type={file_type_lower}, filename={filename_str}")

        try:
            if file_type_lower == "pdf":
                return await self._parse_pdf(file_data, filename_str)
            elif file_type_lower in ["txt", "md"]:
                return await self._parse_text(file_data, file_type_lower, filename_str)
            else:
                raise ParsingError(
                    f"Parser not implemented for file type: {file_type_lower}",
                    file_type=file_type_lower,
                )
        except ParsingError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error parsing document: {filename_str} - {e}", exc_info=True)
            raise ParsingError(
                f"Failed to parse document: {str(e)}",
                file_type=file_type_lower,
            ) from e

    def _fill_author_and_title(self, metadata: DocumentMetadata, first_page: str) -> None:
        """Fall back to ``Author:`` / ``Title:`` lines on the first page."""
        if metadata.author and metadata.title:
            return
        author, title = self.metadata_service.detect_author_and_title(first_page)
        metadata.author = metadata.author or author
        metadata.title = metadata.title or title

    async def _parse_pdf(self, file_data: bytes, filename: str) -> ParsedDocument:
        try:
            pdf_reader = PyPDF2.PdfReader(io.BytesIO(file_data))
        except PyPDF2.errors.PdfReadError as e:
            raise ParsingError(
                f"PDF file is corrupted or invalid: {str(e)}",
                file_type="pdf",
            ) from e

        pages: List[ParsedPage] = []
        for page_num, page in enumerate(pdf_reader.pages, start=1):
            try:
                page_text = page.extract_text() or ""
            except Exception as page_error:
                # A broken page keeps its slot so page numbers stay aligned
                logger.warning(f"Failed to extract text from page {page_num} in {filename}: {page_error}")
                page_text = ""
            pages.append(ParsedPage(page_number=page_num, text=page_text))

        if not any(p.text.strip() for p in pages):
            raise ParsingError(
                "No text could be extracted from PDF. The file may be image-based or corrupted.",
                file_type="pdf",
            )

        info = pdf_reader.metadata or {}
        document = ParsedDocument(pages=pages, file_type="pdf")
        full_text = document.text
        document.metadata = DocumentMetadata(
            page_count=len(pages),
            word_count=len(_WORD.findall(full_text)),
            character_count=document.total_chars,
            title=str(info["/Title"]) if info.get("/Title") else None,
            author=str(info["/Author"]) if info.get("/Author") else None,
        )
        self._fill_author_and_title(document.metadata, pages[0].text)

        logger.info(
            f"Successfully parsed PDF: {filename}, pages={len(pages)}, "
            f"words={document.metadata.word_count}, chars={document.metadata.character_count}"
        )
        return document

    async def _parse_text(self, file_data: bytes, file_type: str, filename: str) -> ParsedDocument:
        # Try UTF-8 first, then fallback to other encodings
        encodings = ["utf-8", "latin-1", "cp1252", "iso-8859-1"]

        text = None
        used_encoding = None
        for encoding in encodings:
            try:
                text = file_data.decode(encoding)
                used_encoding = encoding
                break
            except UnicodeDecodeError:
                continue

        if text is None:
            raise ParsingError(
                "Failed to decode text file. Unsupported encoding.",
                file_type=file_type,
            )

        # Remove BOM if present
        if text.startswith("\ufeff"):
            text = text[1:]

        if not text.strip():
            raise ParsingError("Text file is empty.", file_type=file_type)

        metadata = DocumentMetadata(
            page_count=1,
            word_count=len(_WORD.findall(text)),
            character_count=len(text),
            encoding=used_encoding,
        )
        self._fill_author_and_title(metadata, text)

        logger.info(
            f"Successfully parsed {file_type.upper()}: {filename}, "
            f"words={metadata.word_count}, chars={metadata.character_count}, encoding={used_encoding}"
        )
        return ParsedDocument(
            pages=[ParsedPage(page_number=1, text=text)],
            metadata=metadata,
            file_type=file_type,
        )
