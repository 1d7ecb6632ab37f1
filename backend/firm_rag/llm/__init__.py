"""
Generation Package

Study-material generation over a pluggable chat backend:
  - remote  OpenRouter or any OpenAI-compatible endpoint (LangChain ChatOpenAI)
  - local   Ollama (LangChain ChatOllama)

Public API::

    from firm_rag.llm import GenerationOrchestrator, create_backend

    orchestrator = GenerationOrchestrator(create_backend(settings), retriever)
    summary = await orchestrator.generate_case_summary(case_text)
"""

from firm_rag.llm.backends import GenerationBackend, create_backend
from firm_rag.llm.orchestrator import GenerationOrchestrator

__all__ = [
    "GenerationBackend",
    "GenerationOrchestrator",
    "create_backend",
]
