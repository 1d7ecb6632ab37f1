"""
Semantic Chunker  —  Paragraph-Aware Text Segmentation
═══════════════════════════════════════════════════════

Why not fixed-size chunks?
──────────────────────────
  Fixed-size chunking splits mid-sentence and mid-paragraph:

    "The defendant pleaded guilty to
    [CHUNK BREAK]
    fraud charges in..."

  The retriever finds the first chunk, misses the holding.

Our approach: paragraph accumulation with paragraph overlap
────────────────────────────────────────────────────────────
  1. Normalize: NFC, zero-width / non-breaking spaces → space, strip
     characters outside the allow-list, collapse runs of spaces inside a
     line.  Line breaks survive so paragraph boundaries stay visible.
  2. Paragraphs: split on blank lines, or on a line break followed by an
     indented line that starts with an uppercase letter (the layout of
     reported judgments: "  The court held ...").
  3. Accumulate whole paragraphs until the next one would push the chunk
     past `target_words_per_chunk`; close the chunk there.
  4. Seed the next chunk with the trailing
     floor(overlap_words / ASSUMED_WORDS_PER_PARAGRAPH) paragraphs of the
     chunk just closed, so an argument that straddles the boundary is seen
     whole by at least one chunk.

  Paragraphs are never split, so one paragraph longer than the target
  becomes a chunk of its own.  Output is deterministic: same input, same
  chunks, same order.

Chunk text joins paragraphs with a blank line ("\\n\\n").
"""

from __future__ import annotations

import logging
import re
import unicodedata

from firm_rag.core.errors import ChunkingError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

DEFAULT_TARGET_WORDS        = 500
DEFAULT_OVERLAP_WORDS       = 200
ASSUMED_WORDS_PER_PARAGRAPH = 200

_ZERO_WIDTH_RE = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")
_NBSP_RE       = re.compile("[\u00a0\u2007\u202f]")

# Word chars, whitespace and the punctuation legal text relies on
_DISALLOWED_RE = re.compile(r"[^\w\s.,;:()\[\]{}\-–—'\"‘’“”§¶/&%$?!]")

_INLINE_SPACE_RE = re.compile(r"[^\S\n]+")

_PARAGRAPH_SPLIT_RE = re.compile(r"\n[ ]*\n|\n(?= [A-Z])")

# Short paragraphs that read as headings: "FACTS", "Held:", "Section 4"
_HEADING_RE = re.compile(
    r"""
    ^(
        [A-Z][A-Z\s&]{3,}:?                               # ALL CAPS
      | (?:Issue|Rule|Facts|Held|Holding|Analysis|Conclusion|Judgment)s?:?
      | (?:Section|Part|Chapter|Article|Schedule|§)\s*[\w.()-]+.*
    )$
    """,
    re.VERBOSE,
)
MAX_HEADING_WORDS = 8


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_text(text: str) -> str:
    """
    Clean raw extracted text while keeping line structure.

    A line that began with whitespace keeps exactly one leading space so
    the indented-paragraph rule can still see it.
    """
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _ZERO_WIDTH_RE.sub(" ", text)
    text = _NBSP_RE.sub(" ", text)
    text = _DISALLOWED_RE.sub("", text)

    lines: list[str] = []
    for line in text.split("\n"):
        body = _INLINE_SPACE_RE.sub(" ", line).strip()
        if body and line[:1].isspace():
            body = " " + body
        lines.append(body)
    return "\n".join(lines).strip("\n")


def split_paragraphs(text: str) -> list[str]:
    """Paragraphs of normalized text, each flattened onto one line."""
    paragraphs: list[str] = []
    for block in _PARAGRAPH_SPLIT_RE.split(text):
        flat = " ".join(block.split())
        if flat:
            paragraphs.append(flat)
    return paragraphs


def word_count(text: str) -> int:
    return len(text.split())


def detect_section(chunk_text: str) -> str | None:
    """First heading-like paragraph of a chunk, if any."""
    for paragraph in chunk_text.split("\n\n"):
        candidate = paragraph.strip()
        if candidate and word_count(candidate) <= MAX_HEADING_WORDS and _HEADING_RE.match(candidate):
            return candidate.rstrip(":")
    return None


# ---------------------------------------------------------------------------
# Core chunker
# ---------------------------------------------------------------------------

class SemanticChunker:
    """
    Stateless paragraph chunker.

    Usage:
        chunker = SemanticChunker()
        chunks  = chunker.chunk(case_text, target_words_per_chunk=500, overlap_words=200)
    """

    def __init__(
        self,
        target_words_per_chunk: int = DEFAULT_TARGET_WORDS,
        overlap_words:          int = DEFAULT_OVERLAP_WORDS,
    ) -> None:
        self._target_words  = target_words_per_chunk
        self._overlap_words = overlap_words

    def chunk(
        self,
        text: str,
        target_words_per_chunk: int | None = None,
        overlap_words: int | None = None,
    ) -> list[str]:
        """
        Segment `text` into ordered chunks.

        Raises:
            ChunkingError if nothing is left after normalization, or the
            size parameters are not usable.
        """
        target  = self._target_words if target_words_per_chunk is None else target_words_per_chunk
        overlap = self._overlap_words if overlap_words is None else overlap_words

        if target <= 0:
            raise ChunkingError(f"target_words_per_chunk must be positive, got {target}")
        if overlap < 0:
            raise ChunkingError(f"overlap_words must not be negative, got {overlap}")

        cleaned = normalize_text(text or "")
        if not cleaned.strip():
            raise ChunkingError("No text content to chunk after cleaning.")

        paragraphs = split_paragraphs(cleaned)
        if not paragraphs:
            raise ChunkingError("No text content to chunk after cleaning.")

        overlap_paragraphs = overlap // ASSUMED_WORDS_PER_PARAGRAPH
        chunks = self._accumulate(paragraphs, target, overlap_paragraphs)

        logger.info(
            "SemanticChunker | paragraphs=%d chunks=%d target_words=%d overlap_paragraphs=%d",
            len(paragraphs), len(chunks), target, overlap_paragraphs,
        )
        return chunks

    @staticmethod
    def _accumulate(
        paragraphs: list[str],
        target: int,
        overlap_paragraphs: int,
    ) -> list[str]:
        chunks:  list[str] = []
        current: list[str] = []
        current_words = 0
        fresh = 0   # paragraphs in `current` not carried over from the previous chunk

        for paragraph in paragraphs:
            words = word_count(paragraph)

            if fresh and current_words + words > target:
                chunks.append("\n\n".join(current))

                # Never carry the whole closed chunk forward
                keep = min(overlap_paragraphs, len(current) - 1)
                current = current[len(current) - keep:] if keep > 0 else []
                current_words = sum(word_count(p) for p in current)
                fresh = 0

            current.append(paragraph)
            current_words += words
            fresh += 1

        if fresh:
            chunks.append("\n\n".join(current))

        return chunks
