"""Document models for parsed content."""

from typing import List, Optional

from pydantic import BaseModel, Field


class DocumentMetadata(BaseModel):
    """Metadata extracted from a document."""

    page_count: Optional[int] = Field(None, description="Number of pages (for PDF)")
    word_count: Optional[int] = Field(None, description="Approximate word count")
    character_count: Optional[int] = Field(None, description="Character count")
    title: Optional[str] = Field(None, description="Document title")
    author: Optional[str] = Field(None, description="Document author")
    encoding: Optional[str] = Field(None, description="Text encoding (for TXT files)")


class ParsedPage(BaseModel):
    """Text of a single page. Pages that failed to extract carry an empty string."""

    page_number: int = Field(..., ge=1)
    text: str = ""


class ParsedDocument(BaseModel):
    """Parsed document content, page by page."""

    pages: List[ParsedPage] = Field(default_factory=list)
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    file_type: str = Field(..., description="Original file type (pdf, txt, md)")

    @property
    def text(self) -> str:
        return "\n".join(page.text for page in self.pages)

    @property
    def total_chars(self) -> int:
        return sum(len(page.text) for page in self.pages)


class FileUrl(BaseModel):
    """Signed download location of a stored file."""

    file_id: str
    url: str
