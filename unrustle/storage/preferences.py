"""
Deletion preferences: a row in `deletion_preferences` means "exclude this
user's chat logs". Downstream log processors read the same table.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import psycopg

from unrustle.auth.models import Service
from unrustle.storage.config import load_storage_config

logger = logging.getLogger(__name__)


class PreferenceStore(Protocol):
    def add_user(self, name: str, service: Service) -> None:
        """Record the opt-out. Idempotent."""
        ...

    def delete_user(self, name: str, service: Service) -> None:
        """Remove the opt-out. A no-op when absent."""
        ...

    def exists(self, name: str, service: Service) -> bool:
        ...


class StorageUnavailable(RuntimeError):
    """Postgres is not configured."""


class PostgresPreferenceStore:
    """One short-lived connection per call; each call is its own transaction."""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self._dsn)

    def add_user(self, name: str, service: Service) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO deletion_preferences (name, service)
                VALUES (%s, %s)
                ON CONFLICT (name, service) DO NOTHING
                """,
                (name, service.value),
            )

    def delete_user(self, name: str, service: Service) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM deletion_preferences WHERE name = %s AND service = %s",
                (name, service.value),
            )

    def exists(self, name: str, service: Service) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM deletion_preferences WHERE name = %s AND service = %s",
                (name, service.value),
            ).fetchone()
        return row is not None


# Singleton instance
_store: Optional[PreferenceStore] = None


def get_preference_store() -> PreferenceStore:
    """Preference store configured from POSTGRES_* env vars."""
    global _store
    if _store is None:
        dsn = load_storage_config().dsn
        if not dsn:
            raise StorageUnavailable("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars)")
        _store = PostgresPreferenceStore(dsn)
    return _store


def set_preference_store(store: Optional[PreferenceStore]) -> None:
    """Set preference store instance (for testing)."""
    global _store
    _store = store
