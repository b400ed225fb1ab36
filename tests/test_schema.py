from __future__ import annotations

from unittest.mock import MagicMock, patch

import psycopg
import pytest

from unrustle.storage import schema
from unrustle.storage.config import StorageConfig


def _conn(table_exists: bool) -> MagicMock:
    conn = MagicMock()
    conn.__enter__.return_value = conn

    def execute(sql, params=None):
        result = MagicMock()
        if "to_regclass" in sql:
            result.fetchone.return_value = ("deletion_preferences",) if table_exists else (None,)
        return result

    conn.execute.side_effect = execute
    return conn


def _executed(conn: MagicMock) -> list:
    return [c.args[0] for c in conn.execute.call_args_list]


def test_creates_missing_table_under_lock() -> None:
    conn = _conn(table_exists=False)
    assert schema.ensure_preferences_schema(conn) is True
    executed = _executed(conn)
    assert "pg_advisory_xact_lock" in executed[0]
    assert "CREATE TABLE IF NOT EXISTS deletion_preferences" in executed[-1]
    assert "PRIMARY KEY (name, service)" in executed[-1]
    conn.transaction.assert_called_once()


def test_existing_table_is_left_alone() -> None:
    conn = _conn(table_exists=True)
    assert schema.ensure_preferences_schema(conn) is False
    assert not any("CREATE TABLE" in sql for sql in _executed(conn))


def test_bootstrap_connects_with_dsn() -> None:
    conn = _conn(table_exists=False)
    with patch("unrustle.storage.schema.psycopg.connect", return_value=conn) as connect:
        assert schema.bootstrap_schema("dbname=test") is True
    connect.assert_called_once_with("dbname=test")


def test_startup_bootstrap_disabled() -> None:
    cfg = StorageConfig(dsn="dbname=test", create_schema_on_startup=False)
    assert schema.maybe_bootstrap_on_startup(cfg) == (False, "DB_AUTO_MIGRATE is disabled")


def test_startup_bootstrap_without_dsn() -> None:
    cfg = StorageConfig(dsn=None, create_schema_on_startup=True)
    assert schema.maybe_bootstrap_on_startup(cfg) == (False, "Postgres DSN not configured")


def test_startup_bootstrap_reports_failure_without_raising() -> None:
    cfg = StorageConfig(dsn="dbname=test", create_schema_on_startup=True)
    with patch.object(schema, "bootstrap_schema", side_effect=psycopg.OperationalError("db down")):
        did_attempt, msg = schema.maybe_bootstrap_on_startup(cfg)
    assert did_attempt is True
    assert "db down" in msg


@pytest.mark.parametrize("created,expected", [(True, "Created deletion_preferences"), (False, "already present")])
def test_startup_bootstrap_messages(created: bool, expected: str) -> None:
    cfg = StorageConfig(dsn="dbname=test", create_schema_on_startup=True)
    with patch.object(schema, "bootstrap_schema", return_value=created):
        did_attempt, msg = schema.maybe_bootstrap_on_startup(cfg)
    assert did_attempt is True
    assert expected in msg


def test_cli_without_postgres_exits_2(capsys) -> None:
    assert schema.main() == 2
    assert "Postgres not configured" in capsys.readouterr().out


def test_cli_creates_table(monkeypatch, capsys) -> None:
    monkeypatch.setenv("POSTGRES_DSN", "dbname=test")
    with patch.object(schema, "bootstrap_schema", return_value=True) as bootstrap:
        assert schema.main() == 0
    bootstrap.assert_called_once_with("dbname=test")
    assert "Created deletion_preferences." in capsys.readouterr().out
