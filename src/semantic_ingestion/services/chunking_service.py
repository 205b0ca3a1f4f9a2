"""Heading-aware text segmentation for RAG ingestion."""

import re
from typing import Iterator, List, Optional, Tuple

import tiktoken

from semantic_ingestion.config import get_settings
from semantic_ingestion.models.chunk import Chunk, ChunkParams
from semantic_ingestion.services.metadata_service import MetadataService
from semantic_ingestion.utils.errors import ChunkingError
from semantic_ingestion.utils.logging import get_logger

logger = get_logger("chunking_service")
settings = get_settings()

# A heading line is a markdown heading or a short all-caps line.
_CAPS_HEADING = r"[A-Z][A-Z0-9 \t,:;&'()/\-]{2,}"
_HEADING_SPLIT = re.compile(rf"^(#+[ \t].*|{_CAPS_HEADING})$", re.MULTILINE)
_HEADING_PART = re.compile(rf"\s*(#+[ \t].*|{_CAPS_HEADING})\s*")

# (total_chars upper bound, chunk_size, chunk_overlap); the last row has no bound
_ADAPTIVE_PARAMS: List[Tuple[Optional[int], int, int]] = [
    (1000, 700, 100),
    (5000, 1500, 200),
    (10000, 2500, 300),
    (50000, 3000, 300),
    (None, 4000, 400),
]


def choose_params(total_chars: int) -> ChunkParams:
    """Pick chunk size and overlap (in characters) from the document length."""
    for upper, chunk_size, chunk_overlap in _ADAPTIVE_PARAMS:
        if upper is None or total_chars < upper:
            return ChunkParams(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    raise AssertionError("unreachable")


def is_heading(text: Optional[str]) -> bool:
    """True when ``text`` is a single heading line."""
    if not text or "\n" in text.strip():
        return False
    return _HEADING_PART.fullmatch(text) is not None


def heading_level(line: str) -> int:
    stripped = line.strip()
    if stripped.startswith("#"):
        return len(stripped) - len(stripped.lstrip("#"))
    return 1


def heading_title(line: str) -> str:
    return line.strip().lstrip("#").strip()


def split_by_headings(text: Optional[str]) -> List[str]:
    """
    Split text on heading lines.

    Each returned part is either a heading line or the text between two
    headings. Empty strings are dropped; whitespace-only parts are kept so the
    original text can be rebuilt by concatenation.
    """
    if not text:
        logger.debug("split_by_headings: no text provided")
        return []
    return [part for part in _HEADING_SPLIT.split(text) if part]


def merge_small_parts(parts: List[str], min_size: int) -> List[str]:
    """Join neighbouring parts while the joined text stays shorter than ``min_size``."""
    merged: List[str] = []
    buffer = ""
    for part in parts:
        if not buffer:
            buffer = part
        elif len(buffer + part) < min_size:
            buffer += "\n" + part
        else:
            merged.append(buffer)
            buffer = part
    if buffer:
        merged.append(buffer)
    return merged


def window_text(text: str, chunk_size: int, chunk_overlap: int) -> Iterator[str]:
    """
    Slide a ``chunk_size`` window over ``text`` in steps of ``chunk_size - chunk_overlap``.

    Stops once a window reaches the end of the text; the last window may be shorter.
    """
    step = chunk_size - chunk_overlap
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        yield text[start:end]
        if end >= len(text):
            break
        start += step


class ChunkingService:
    """
    Split documents into heading-aware, size-bounded, overlapping chunks.

    1. Split on heading lines (markdown ``#`` or all-caps lines).
    2. Merge tiny neighbouring parts so headings and short paragraphs do not
       become isolated fragments.
    3. Emit a lone heading line as its own heading chunk, a part that fits in
       ``chunk_size`` as one chunk, and window anything larger with overlap.
    """

    def __init__(
        self,
        metadata_service: Optional[MetadataService] = None,
        encoding_name: Optional[str] = None,
        min_part_size: Optional[int] = None,
    ):
        self.metadata_service = metadata_service or MetadataService()
        self.encoding_name = encoding_name or settings.chunking.token_encoding
        self.min_part_size = min_part_size or settings.chunking.min_part_size
        self._encoding = None
        self._encoding_unavailable = False

    def choose_params(self, total_chars: int) -> ChunkParams:
        return choose_params(total_chars)

    def _count_tokens(self, text: str) -> Optional[int]:
        if self._encoding_unavailable:
            return None
        if self._encoding is None:
            try:
                self._encoding = tiktoken.get_encoding(self.encoding_name)
            except Exception as e:
                # Token counts are informational; chunks are still emitted without them
                logger.warning(f"tiktoken encoding '{self.encoding_name}' unavailable, skipping token counts: {e}")
                self._encoding_unavailable = True
                return None
        return len(self._encoding.encode(text, disallowed_special=()))

    def segment(
        self,
        text: Optional[str],
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        document_id: Optional[str] = None,
        start_number: int = 1,
        headings: Optional[List[str]] = None,
    ) -> List[Chunk]:
        """
        Segment text into chunks with metadata.

        Args:
            text: Raw document (or page) text
            chunk_size: Maximum window size in characters (adaptive when omitted)
            chunk_overlap: Characters shared by consecutive windows (adaptive when omitted)
            document_id: Parent document identifier stored on each chunk
            start_number: Sequence number of the first emitted chunk
            headings: Heading path in effect where the text starts, outermost first

        Returns:
            Chunks in text order with strictly increasing ``chunk_number``

        Raises:
            ChunkingError: If chunk_size/chunk_overlap describe no forward progress
        """
        if not text or not text.strip():
            logger.debug("segment: no text provided")
            return []

        if chunk_size is None or chunk_overlap is None:
            params = choose_params(len(text))
            chunk_size = params.chunk_size if chunk_size is None else chunk_size
            chunk_overlap = params.chunk_overlap if chunk_overlap is None else chunk_overlap

        if chunk_size <= 0:
            raise ChunkingError("chunk_size must be > 0", details={"chunk_size": chunk_size})
        if chunk_overlap < 0:
            raise ChunkingError("chunk_overlap must be >= 0", details={"chunk_overlap": chunk_overlap})
        if chunk_overlap >= chunk_size:
            raise ChunkingError(
                "chunk_overlap must be less than chunk_size",
                details={"chunk_overlap": chunk_overlap, "chunk_size": chunk_size},
            )

        try:
            return self._segment(text, chunk_size, chunk_overlap, document_id, start_number, headings or [])
        except Exception as e:
            logger.error(f"Segmentation failed, returning no chunks: {e}", exc_info=True)
            return []

    def _segment(
        self,
        text: str,
        chunk_size: int,
        chunk_overlap: int,
        document_id: Optional[str],
        start_number: int,
        headings: List[str],
    ) -> List[Chunk]:
        parts = merge_small_parts(split_by_headings(text), self.min_part_size)

        chunks: List[Chunk] = []
        # Carried-over titles only keep their nesting order
        heading_path: List[Tuple[int, str]] = [(level, title) for level, title in enumerate(headings, start=1)]
        number = start_number

        for part in parts:
            trimmed = part.strip()
            if not trimmed:
                continue

            heading_path = self._advance_heading_path(heading_path, trimmed)
            path_titles = [title for _, title in heading_path]

            if is_heading(trimmed):
                pieces, heading_chunk = [trimmed], True
            elif len(trimmed) <= chunk_size:
                pieces, heading_chunk = [trimmed], False
            else:
                pieces, heading_chunk = list(window_text(trimmed, chunk_size, chunk_overlap)), False

            for piece in pieces:
                metadata = self.metadata_service.extract(piece, is_heading=heading_chunk)
                metadata.headings = list(path_titles)
                metadata.num_tokens = self._count_tokens(piece)
                chunks.append(
                    Chunk(
                        document_id=document_id,
                        chunk_number=number,
                        page_content=piece,
                        metadata=metadata,
                    )
                )
                number += 1

        logger.debug(
            f"Segmented text: chars={len(text)}, parts={len(parts)}, chunks={len(chunks)}, "
            f"chunk_size={chunk_size}, chunk_overlap={chunk_overlap}"
        )
        return chunks

    @staticmethod
    def _advance_heading_path(path: List[Tuple[int, str]], part: str) -> List[Tuple[int, str]]:
        """Apply every heading line found in ``part`` to the current heading path."""
        path = list(path)
        for line in part.split("\n"):
            if not is_heading(line):
                continue
            level = heading_level(line)
            while path and path[-1][0] >= level:
                path.pop()
            path.append((level, heading_title(line)))
        return path
