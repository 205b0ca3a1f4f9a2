"""Lightweight, heuristic chunk metadata extraction."""

import re
from collections import Counter
from typing import List, Optional, Tuple

from semantic_ingestion.models.chunk import ChunkMetadata
from semantic_ingestion.utils.logging import get_logger

logger = get_logger("metadata_service")

MAX_KEYWORDS = 10
MIN_KEYWORD_LENGTH = 4
SNIPPET_LENGTH = 200

_WORD_SPLIT = re.compile(r"\W+")
_ENTITY_PATTERN = re.compile(r"\b[A-Z][a-z]+\s+[A-Z][a-z]+\b")
_SNIPPET_PATTERN = re.compile(r"Snippet:\s*(.*)\n")
_CAPS_LINE = re.compile(r"^[A-Z\s]+$")
_SECTION_LINE = re.compile(r"^Section\s+\d+:")
_AUTHOR_LINE = re.compile(r"^Author:\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_TITLE_LINE = re.compile(r"^Title:\s*(.+)$", re.IGNORECASE | re.MULTILINE)

# Topics are matched independently; a chunk may carry several.
TOPIC_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("Finance", re.compile(r"\b(market|finance|stock)\b", re.IGNORECASE)),
    ("AI", re.compile(r"\b(ml|machine learning|ai|artificial intelligence)\b", re.IGNORECASE)),
    ("Legal", re.compile(r"\b(law|legal|court|act)\b", re.IGNORECASE)),
]


class MetadataService:
    """
    Naive keyword, entity and topic extraction.

    These are intentionally cheap heuristics. Every extractor logs and returns
    an empty result on bad input instead of raising, so one odd chunk never
    stalls the pipeline.
    """

    def extract_keywords(self, text: Optional[str]) -> List[str]:
        """
        Top words of length >= 4 by descending frequency.

        Ties keep the order in which the words first appear in the text.
        """
        if not text:
            return []
        try:
            words = [w for w in _WORD_SPLIT.split(text.lower()) if len(w) >= MIN_KEYWORD_LENGTH]
            counts = Counter(words)
            # Counter keeps insertion order and sorted() is stable
            ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
            return [word for word, _ in ranked[:MAX_KEYWORDS]]
        except Exception as e:
            logger.warning(f"Keyword extraction failed: {e}")
            return []

    def extract_entities(self, text: Optional[str]) -> List[str]:
        """Distinct capitalized two-word sequences, in first-seen order."""
        if not text:
            return []
        try:
            return list(dict.fromkeys(_ENTITY_PATTERN.findall(text)))
        except Exception as e:
            logger.warning(f"Entity extraction failed: {e}")
            return []

    def assign_topics(self, text: Optional[str]) -> List[str]:
        if not text:
            return []
        try:
            return [topic for topic, pattern in TOPIC_PATTERNS if pattern.search(text)]
        except Exception as e:
            logger.warning(f"Topic assignment failed: {e}")
            return []

    def extract_headings(self, text: Optional[str]) -> List[str]:
        """Lines written in all caps or shaped like ``Section 3: ...``."""
        if not text:
            return []
        headings = []
        for line in text.split("\n"):
            stripped = line.strip()
            if not stripped:
                continue
            if (_CAPS_LINE.match(stripped) and any(c.isalpha() for c in stripped)) or _SECTION_LINE.match(stripped):
                headings.append(stripped)
        return headings

    def extract_snippet(self, text: Optional[str]) -> Optional[str]:
        """Explicit ``Snippet:`` line if present, else a short collapsed preview."""
        if not text:
            return None
        match = _SNIPPET_PATTERN.search(text)
        if match and match.group(1).strip():
            return match.group(1).strip()
        preview = " ".join(text.split())
        return preview[:SNIPPET_LENGTH] or None

    def detect_author_and_title(self, text: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """Look for ``Author:`` and ``Title:`` lines, typically on a first page."""
        if not text:
            return None, None
        author_match = _AUTHOR_LINE.search(text)
        title_match = _TITLE_LINE.search(text)
        author = author_match.group(1).strip() if author_match else None
        title = title_match.group(1).strip() if title_match else None
        return author or None, title or None

    def extract(self, text: Optional[str], is_heading: bool = False) -> ChunkMetadata:
        return ChunkMetadata(
            is_heading=is_heading,
            keywords=self.extract_keywords(text),
            entities=self.extract_entities(text),
            topics=self.assign_topics(text),
            snippet=self.extract_snippet(text),
        )
