"""Document text extraction for the supported file kinds.

Supports: PDF, DOCX, legacy DOC (via LibreOffice), plain text / Markdown.

The set of kinds is closed. `resolve_kind` picks a kind from the filename
extension, falling back to the declared media type; each kind's extractor
knows how to validate the file signature and pull out plain text.
"""

import codecs
import logging
import os
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from enum import Enum as PyEnum
from io import BytesIO
from pathlib import Path

from docx import Document as DocxDocument
from pypdf import PdfReader

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Raised when text extraction fails."""
    pass


class DocumentKind(str, PyEnum):
    """Supported document container formats."""
    PDF = "pdf"
    DOCX = "docx"
    DOC = "doc"
    TEXT = "text"


class TextExtractor(ABC):
    """Base class for text extractors."""

    kind: DocumentKind
    extensions: tuple[str, ...] = ()
    media_types: tuple[str, ...] = ()

    @abstractmethod
    def validate(self, content: bytes) -> bool:
        """Check the file signature matches this kind."""

    @abstractmethod
    def extract(self, content: bytes) -> str:
        """Extract text from document content."""


class PlainTextExtractor(TextExtractor):
    """Extract text from plain text and markdown files."""

    kind = DocumentKind.TEXT
    extensions = (".txt", ".md", ".markdown")
    media_types = ("text/plain", "text/txt", "application/txt", "text/markdown", "text/x-markdown")

    # Tried in order; latin-1 accepts any byte sequence and terminates the search
    ENCODINGS = ("utf-8", "cp1251", "latin-1")
    SAMPLE_SIZE = 4096
    MIN_PRINTABLE_RATIO = 0.9

    def _decode(self, content: bytes) -> str:
        if content.startswith((b"\xff\xfe", b"\xfe\xff")):
            return content.decode("utf-16", errors="replace")
        for encoding in self.ENCODINGS:
            try:
                return content.decode(encoding)
            except UnicodeDecodeError:
                continue
        raise ExtractionError("Could not decode text file")

    def _decode_sample(self, sample: bytes) -> str:
        if not sample.startswith((b"\xff\xfe", b"\xfe\xff")):
            try:
                # A trailing partial character from the cut is held back, not an error
                return codecs.getincrementaldecoder("utf-8")().decode(sample, final=False)
            except UnicodeDecodeError:
                pass
        return self._decode(sample)

    def validate(self, content: bytes) -> bool:
        """Accept content that decodes to mostly printable characters."""
        sample = self._decode_sample(content[: self.SAMPLE_SIZE]) if content else ""
        if not sample:
            return False
        printable = sum(1 for ch in sample if ch.isprintable() or ch in "\n\r\t")
        return printable / len(sample) >= self.MIN_PRINTABLE_RATIO

    def extract(self, content: bytes) -> str:
        """Decode bytes to text."""
        return self._decode(content)


class PDFExtractor(TextExtractor):
    """Extract text from PDF files using pypdf."""

    kind = DocumentKind.PDF
    extensions = (".pdf",)
    media_types = ("application/pdf",)

    # Share of letters among non-space characters below which the text layer
    # is treated as garbage (broken font encodings, scanned images)
    MIN_LETTER_RATIO = 0.4

    def validate(self, content: bytes) -> bool:
        return content[:4] == b"%PDF"

    def extract(self, content: bytes) -> str:
        """Extract text from all pages of a PDF."""
        try:
            reader = PdfReader(BytesIO(content))

            if reader.is_encrypted:
                # Owner-password-only PDFs open with an empty user password
                if not reader.decrypt(""):
                    raise ExtractionError("PDF is password protected")

            text_parts = []
            for page in reader.pages:
                page_text = page.extract_text() or ""
                if page_text.strip():
                    text_parts.append(page_text)

        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"PDF extraction failed: {e}") from e

        if not text_parts:
            raise ExtractionError("No text could be extracted from PDF (scanned or image-only?)")

        text = "\n\n".join(text_parts)
        if not self._looks_like_text(text):
            raise ExtractionError("PDF text layer is unreadable (unsupported font encoding?)")
        return text

    def _looks_like_text(self, text: str) -> bool:
        visible = [ch for ch in text if not ch.isspace()]
        if not visible:
            return False
        if visible.count("\ufffd") / len(visible) > 0.05:
            return False
        letters = sum(1 for ch in visible if ch.isalpha())
        return letters / len(visible) >= self.MIN_LETTER_RATIO


class DOCXExtractor(TextExtractor):
    """Extract text from Word documents using python-docx."""

    kind = DocumentKind.DOCX
    extensions = (".docx",)
    media_types = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",)

    def validate(self, content: bytes) -> bool:
        # DOCX is a ZIP container
        return content[:4] == b"PK\x03\x04"

    def extract(self, content: bytes) -> str:
        """Extract text from DOCX, preserving paragraph structure."""
        try:
            doc = DocxDocument(BytesIO(content))
        except Exception as e:
            raise ExtractionError(f"DOCX extraction failed: {e}") from e

        text_parts = [para.text.strip() for para in doc.paragraphs if para.text.strip()]

        for table in doc.tables:
            for row in table.rows:
                row_text = " | ".join(cell.text.strip() for cell in row.cells)
                if row_text.replace("|", "").strip():
                    text_parts.append(row_text)

        if not text_parts:
            raise ExtractionError("No text could be extracted from DOCX")

        return "\n\n".join(text_parts)


class DOCExtractor(TextExtractor):
    """Extract text from legacy Word 97-2003 files via headless LibreOffice."""

    kind = DocumentKind.DOC
    extensions = (".doc",)
    media_types = ("application/msword", "application/vnd.ms-word")

    def __init__(self, timeout: float = 120.0):
        self.timeout = timeout

    def validate(self, content: bytes) -> bool:
        # OLE2 compound document header
        return content[:4] == b"\xd0\xcf\x11\xe0"

    def extract(self, content: bytes) -> str:
        lo_cmd = shutil.which("libreoffice") or shutil.which("soffice")
        if not lo_cmd:
            raise ExtractionError("LibreOffice is required to read .doc files but was not found")

        with tempfile.TemporaryDirectory(prefix="librarian-doc-") as workdir:
            source = Path(workdir) / "document.doc"
            source.write_bytes(content)

            try:
                proc = subprocess.run(
                    [
                        lo_cmd,
                        "--headless",
                        "--convert-to",
                        "txt:Text (encoded):UTF8",
                        "--outdir",
                        workdir,
                        str(source),
                    ],
                    capture_output=True,
                    timeout=self.timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired as e:
                raise ExtractionError(f"LibreOffice conversion timed out after {self.timeout}s") from e

            output = Path(workdir) / "document.txt"
            if proc.returncode != 0 or not output.exists():
                stderr = proc.stderr.decode("utf-8", errors="replace")[:500]
                raise ExtractionError(f"LibreOffice conversion failed: {stderr}")

            return output.read_text(encoding="utf-8", errors="replace")


EXTRACTORS: dict[DocumentKind, TextExtractor] = {
    extractor.kind: extractor
    for extractor in (PDFExtractor(), DOCXExtractor(), DOCExtractor(), PlainTextExtractor())
}

_EXTENSION_MAP = {ext: kind for kind, ex in EXTRACTORS.items() for ext in ex.extensions}
_MEDIA_TYPE_MAP = {mt: kind for kind, ex in EXTRACTORS.items() for mt in ex.media_types}


def resolve_kind(filename: str | None, media_type: str | None) -> DocumentKind | None:
    """Pick the document kind for a file.

    The filename extension decides; the media type is only consulted when the
    extension is missing or unknown.
    """
    if filename:
        ext = os.path.splitext(filename)[1].lower()
        if ext in _EXTENSION_MAP:
            return _EXTENSION_MAP[ext]

    if media_type:
        normalized = media_type.split(";", 1)[0].strip().lower()
        return _MEDIA_TYPE_MAP.get(normalized)

    return None


def supported_extensions() -> list[str]:
    """All accepted filename extensions."""
    return sorted(_EXTENSION_MAP)


class DocumentExtractor:
    """Unified document extractor that delegates to kind-specific extractors."""

    def __init__(self, extractors: dict[DocumentKind, TextExtractor] | None = None):
        self.extractors = extractors or EXTRACTORS

    def resolve(self, filename: str | None, media_type: str | None) -> DocumentKind | None:
        return resolve_kind(filename, media_type)

    def validate(self, content: bytes, kind: DocumentKind) -> bool:
        """Check `content` carries the signature expected for `kind`."""
        try:
            return self.extractors[kind].validate(content)
        except ExtractionError:
            return False

    def extract(
        self,
        content: bytes,
        filename: str | None = None,
        media_type: str | None = None,
        kind: DocumentKind | None = None,
    ) -> str:
        """Extract text from a document.

        Args:
            content: Raw document bytes
            filename: Original filename, used to pick the kind
            media_type: Declared MIME type, secondary signal
            kind: Explicit kind, skips resolution

        Returns:
            Extracted text (not yet normalized)

        Raises:
            ExtractionError: If the type is unsupported, extraction fails,
                or no text comes out
        """
        kind = kind or self.resolve(filename, media_type)
        if kind is None:
            raise ExtractionError(
                f"Unsupported file type: {filename or media_type}. "
                f"Supported extensions: {', '.join(supported_extensions())}"
            )

        logger.debug(f"[Extractor] Extracting {kind.value} document: {filename}")
        text = self.extractors[kind].extract(content)
        text = text.lstrip("\ufeff")

        if not text.strip():
            raise ExtractionError("No text could be extracted from file")

        return text
