from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from psycopg.conninfo import make_conninfo


@dataclass(frozen=True)
class StorageConfig:
    dsn: Optional[str]  # None when Postgres is not configured
    create_schema_on_startup: bool


def _env(name: str) -> Optional[str]:
    return (os.getenv(name) or "").strip() or None


def _dsn_from_parts() -> Optional[str]:
    host = _env("POSTGRES_HOST")
    db = _env("POSTGRES_DB")
    user = _env("POSTGRES_USER")
    # Passwords are taken verbatim; surrounding spaces may be significant.
    password = os.getenv("POSTGRES_PASSWORD") or None
    if not (host and db and user and password):
        return None
    # make_conninfo quotes values with spaces or quotes in them.
    return make_conninfo(
        host=host,
        port=_env("POSTGRES_PORT") or "5432",
        dbname=db,
        user=user,
        password=password,
    )


def load_storage_config() -> StorageConfig:
    """
    Where the opt-out table lives.

    POSTGRES_DSN wins; otherwise all of POSTGRES_HOST, POSTGRES_DB, POSTGRES_USER
    and POSTGRES_PASSWORD are needed (POSTGRES_PORT defaults to 5432).
    """
    return StorageConfig(
        dsn=_env("POSTGRES_DSN") or _dsn_from_parts(),
        create_schema_on_startup=(_env("DB_AUTO_MIGRATE") or "").lower() in ("1", "true", "yes", "on"),
    )
