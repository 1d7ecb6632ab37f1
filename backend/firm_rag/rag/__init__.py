"""
RAG package: scoped similarity search and prompt context formatting.
"""

from firm_rag.rag.retriever import RetrievalService, build_filters, format_context

__all__ = [
    "RetrievalService",
    "build_filters",
    "format_context",
]
