"""
Repository Factory

Selects the persistence backend (postgres | memory) from settings.
Services only ever see DocumentRepository; nothing outside this module
touches the concrete classes.
"""

from __future__ import annotations

from firm_rag.core.config import Settings
from firm_rag.core.errors import ConfigurationError
from firm_rag.store.base import DocumentRepository


def create_repository(settings: Settings) -> DocumentRepository:
    backend = settings.store_backend.lower()

    if backend == "postgres":
        from firm_rag.db.session import create_engine, create_session_factory
        from firm_rag.store.pgvector_store import PgVectorRepository

        engine = create_engine(settings)
        return PgVectorRepository(create_session_factory(engine), engine=engine)

    if backend == "memory":
        from firm_rag.store.inmemory import InMemoryRepository
        return InMemoryRepository()

    raise ConfigurationError(
        f"Unknown store backend: '{backend}'. Valid options: 'postgres', 'memory'"
    )
