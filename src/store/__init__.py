"""Persistence backends for signals, stages, webhooks, metrics, alerts and trades."""

from typing import Optional

from src.settings import Settings, get_settings
from src.store.base import DataStore
from src.store.memory import InMemoryStore
from src.store.sql import SqlAlchemyStore


def create_store(settings: Optional[Settings] = None) -> DataStore:
    """Build the configured backend: SQL when ``use_database`` is on, else in-memory."""
    settings = settings or get_settings()
    if settings.use_database:
        return SqlAlchemyStore()
    return InMemoryStore()


__all__ = [
    "DataStore",
    "InMemoryStore",
    "SqlAlchemyStore",
    "create_store",
]
