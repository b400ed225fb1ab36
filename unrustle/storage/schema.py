"""
Bootstrap for the `deletion_preferences` table.

The table is shared with the log processors that honour opt-outs, so this only
ever creates it when missing and never alters an existing one.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import psycopg

from unrustle.storage.config import StorageConfig, load_storage_config

logger = logging.getLogger(__name__)

PREFERENCES_TABLE = "deletion_preferences"

# Serializes concurrent bootstraps (several replicas starting at once).
SCHEMA_LOCK_KEY = 431902217736

PREFERENCES_DDL = """
CREATE TABLE IF NOT EXISTS deletion_preferences (
  name text NOT NULL,
  service text NOT NULL,
  created_at timestamptz NOT NULL DEFAULT now(),
  PRIMARY KEY (name, service)
);
"""


def ensure_preferences_schema(conn: psycopg.Connection) -> bool:
    """Create the preference table if it is missing. Returns True if it was created."""
    with conn.transaction():
        conn.execute("SELECT pg_advisory_xact_lock(%s);", (SCHEMA_LOCK_KEY,))
        row = conn.execute("SELECT to_regclass(%s);", (PREFERENCES_TABLE,)).fetchone()
        if row is not None and row[0] is not None:
            return False
        conn.execute(PREFERENCES_DDL)
    return True


def bootstrap_schema(dsn: str) -> bool:
    with psycopg.connect(dsn) as conn:
        created = ensure_preferences_schema(conn)
    if created:
        logger.info("created table %s", PREFERENCES_TABLE)
    return created


def maybe_bootstrap_on_startup(cfg: Optional[StorageConfig] = None) -> Tuple[bool, str]:
    """
    Create the table at server startup when DB_AUTO_MIGRATE=1.

    Never raises for database errors; the server starts either way and the
    preference routes report the storage failure.

    Returns: (did_attempt, message)
    """
    cfg = cfg or load_storage_config()
    if not cfg.create_schema_on_startup:
        return False, "DB_AUTO_MIGRATE is disabled"
    if not cfg.dsn:
        return False, "Postgres DSN not configured"
    try:
        created = bootstrap_schema(cfg.dsn)
    except psycopg.Error as e:
        return True, f"Schema bootstrap failed: {e}"
    return True, f"Created {PREFERENCES_TABLE}" if created else f"{PREFERENCES_TABLE} already present"


def main() -> int:
    cfg = load_storage_config()
    if not cfg.dsn:
        print("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars).")
        return 2
    if bootstrap_schema(cfg.dsn):
        print(f"Created {PREFERENCES_TABLE}.")
    else:
        print(f"{PREFERENCES_TABLE} already present.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
