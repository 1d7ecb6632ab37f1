"""
Text Extraction
═══════════════

Turns uploaded bytes into plain text for the chunker.

Format detection (magic bytes, never the client's filename or MIME type):

  %PDF              → PDF
  PK\\x03\\x04        → DOCX (Office Open XML zip)
  \\xd0\\xcf\\x11\\xe0  → legacy .doc (OLE2)   ✗ unsupported
  anything else     → plain text if it decodes cleanly, else ✗ unsupported

PDF strategy cascade:
  1.  PyMuPDF (fitz) — native text layer, fast, in-process
  2.  pypdf          — pure-Python fallback when PyMuPDF raises or
                       finds no text

Parsing is blocking, so every strategy runs in the default thread
executor.  Extraction failures are permanent: the same bytes fail the same
way, so ExtractionError is never retried.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from dataclasses import dataclass

from firm_rag.core.errors import ExtractionError

logger = logging.getLogger(__name__)

_PDF_MAGIC  = b"%PDF"
_DOCX_MAGIC = b"PK\x03\x04"
_OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

# Share of C0 control characters (excluding tab/newline/CR) above which
# undecodable-looking content is rejected as binary
_MAX_CONTROL_CHAR_RATIO = 0.05


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass
class ExtractionResult:
    """
    text           : extracted text; pages / paragraphs separated by "\\n\\n"
    source_format  : "pdf" | "docx" | "text"
    strategy_used  : "pymupdf" | "pypdf" | "python-docx" | "utf-8" | "latin-1"
    page_count     : PDF pages (1 for other formats)
    elapsed_ms     : wall time of the extraction
    """
    text:          str
    source_format: str
    strategy_used: str
    page_count:    int
    elapsed_ms:    float

    @property
    def total_chars(self) -> int:
        return len(self.text)


def detect_format(content: bytes) -> str:
    head = content[:8]
    if head.startswith(_PDF_MAGIC):
        return "pdf"
    if head.startswith(_DOCX_MAGIC):
        return "docx"
    if head.startswith(_OLE2_MAGIC):
        return "doc"
    return "text"


# ---------------------------------------------------------------------------
# Blocking strategies (run in executor)
# ---------------------------------------------------------------------------

def _extract_pdf_pymupdf(data: bytes) -> tuple[str, int]:
    import fitz  # PyMuPDF; imported here to avoid module-level import cost

    with fitz.open(stream=data, filetype="pdf") as doc:
        pages = [(page.get_text("text") or "").strip() for page in doc]
    return "\n\n".join(p for p in pages if p), len(pages)


def _extract_pdf_pypdf(data: bytes) -> tuple[str, int]:
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    pages = [(page.extract_text() or "").strip() for page in reader.pages]
    return "\n\n".join(p for p in pages if p), len(pages)


def _extract_docx(data: bytes) -> str:
    import docx

    document = docx.Document(io.BytesIO(data))
    return "\n\n".join(p.text for p in document.paragraphs if p.text.strip())


def _decode_text(data: bytes) -> tuple[str, str]:
    try:
        return data.decode("utf-8-sig"), "utf-8"
    except UnicodeDecodeError:
        pass

    if b"\x00" in data:
        raise ExtractionError("Unsupported binary content.")

    text = data.decode("latin-1")
    control = sum(1 for ch in text if ord(ch) < 32 and ch not in "\t\n\r")
    if text and control / len(text) > _MAX_CONTROL_CHAR_RATIO:
        raise ExtractionError("Unsupported binary content.")
    return text, "latin-1"


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class TextExtractor:
    """
    Stateless extractor.

    Usage:
        result = await TextExtractor().extract(upload_bytes, filename="smith-v-jones.pdf")
        result.text
    """

    async def extract(self, content: bytes, filename: str | None = None) -> ExtractionResult:
        if not content:
            raise ExtractionError("Empty document.")

        t0 = time.monotonic()
        source_format = detect_format(content)

        if source_format == "pdf":
            text, strategy, page_count = await self._extract_pdf(content)
        elif source_format == "docx":
            text = await self._run_blocking(_extract_docx, content, label="python-docx")
            strategy, page_count = "python-docx", 1
        elif source_format == "doc":
            raise ExtractionError("Legacy .doc files are not supported; save as DOCX or PDF.")
        else:
            if b"\x00" in content[:1024]:
                raise ExtractionError("Unsupported binary content.")
            text, strategy = _decode_text(content)
            page_count = 1

        if not text.strip():
            raise ExtractionError("No text could be extracted from the document.")

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Extraction | file=%s format=%s strategy=%s pages=%d chars=%d elapsed_ms=%.0f",
            filename or "-", source_format, strategy, page_count, len(text), elapsed_ms,
        )
        return ExtractionResult(
            text=text,
            source_format=source_format,
            strategy_used=strategy,
            page_count=page_count,
            elapsed_ms=elapsed_ms,
        )

    async def _extract_pdf(self, content: bytes) -> tuple[str, str, int]:
        """PyMuPDF first; pypdf when PyMuPDF raises or finds no text layer."""
        try:
            text, pages = await asyncio.get_running_loop().run_in_executor(
                None, _extract_pdf_pymupdf, content,
            )
            if text.strip():
                return text, "pymupdf", pages
            logger.info("PyMuPDF found no text layer | pages=%d — trying pypdf", pages)
        except Exception as exc:
            logger.warning("PyMuPDF extraction failed: %s — trying pypdf", exc)

        text, pages = await self._run_blocking(_extract_pdf_pypdf, content, label="pypdf")
        return text, "pypdf", pages

    @staticmethod
    async def _run_blocking(fn, content: bytes, *, label: str):
        try:
            return await asyncio.get_running_loop().run_in_executor(None, fn, content)
        except ExtractionError:
            raise
        except Exception as exc:
            logger.warning("Extraction failed | strategy=%s error=%s", label, exc)
            raise ExtractionError(f"Could not parse document ({label}).") from exc
