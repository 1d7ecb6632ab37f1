"""
Document Processing Package
════════════════════════════

Turns an uploaded document into embedded chunks:

  Text Extraction → Semantic Chunking → Embedding

Modules
───────
  extractor.py   Format detection + extraction (PyMuPDF → pypdf, python-docx, text)
  chunking.py    Paragraph-accumulating chunker with paragraph overlap
  embeddings.py  Batched, concurrency-bounded embedding client with retries

Every component is stateless apart from its configuration and is injected
into IngestionService by the container.
"""

from firm_rag.processing.chunking import SemanticChunker
from firm_rag.processing.embeddings import EmbeddingClient
from firm_rag.processing.extractor import ExtractionResult, TextExtractor

__all__ = [
    "ExtractionResult",
    "TextExtractor",
    "SemanticChunker",
    "EmbeddingClient",
]
