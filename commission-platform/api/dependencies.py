"""
FastAPI dependencies.

The store is built once per process from EngineSettings:
COMMISSION_STORE=memory keeps everything in process (local runs, demos),
COMMISSION_STORE=supabase talks to the configured Supabase project.
Tests replace `get_store` through `app.dependency_overrides`.
"""

import logging
from functools import lru_cache

from repositories.commission_store import CommissionStore, InMemoryCommissionStore
from services.settings import EngineSettings, get_settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _build_store() -> CommissionStore:
    settings = get_settings()
    if settings.store_backend == "supabase":
        from repositories.client import get_supabase
        from repositories.supabase_commission_store import SupabaseCommissionStore

        logger.info("Using Supabase commission store")
        return SupabaseCommissionStore(get_supabase())

    logger.info("Using in-memory commission store")
    return InMemoryCommissionStore()


def get_store() -> CommissionStore:
    return _build_store()


def get_engine_settings() -> EngineSettings:
    return get_settings()


__all__ = ["get_engine_settings", "get_store"]
