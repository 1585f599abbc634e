"""
API Dependencies - Dependency injection for FastAPI routes.

Provides singleton instances of the record store and search engine.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from dealsearch.adapters.sqlite import SQLiteRecordStore
from dealsearch.config import get_settings
from dealsearch.domains.search import SearchEngine

logger = logging.getLogger(__name__)


@lru_cache
def get_record_store() -> SQLiteRecordStore:
    """Get SQLite record store singleton."""
    settings = get_settings()
    return SQLiteRecordStore(settings.db_path)


@lru_cache
def get_search_engine() -> SearchEngine:
    """Get search engine singleton."""
    return SearchEngine.from_settings(get_record_store(), get_settings())


async def init_services() -> None:
    """
    Initialize services on startup.

    This should be called from the FastAPI lifespan handler.
    """
    store = get_record_store()
    await store.initialize()

    # Warm the vocabulary so the first suggestions are not empty
    engine = get_search_engine()
    await engine.suggestions.ensure_vocabulary()
    logger.info("Vocabulary ready: %d terms", len(engine.suggestions.vocabulary))


async def cleanup_services() -> None:
    """Cleanup services on shutdown."""
    await get_search_engine().aclose()
    await get_record_store().close()
    get_search_engine.cache_clear()
    get_record_store.cache_clear()
