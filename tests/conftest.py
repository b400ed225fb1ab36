"""
Pytest config.

Pins the repo root on sys.path so `import unrustle` works when pytest is invoked
without an editable install, and gives every test a clean auth/storage setup.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from tests.fakes import TEST_SECRET, InMemoryPreferenceStore  # noqa: E402
from unrustle.auth.config import load_auth_config  # noqa: E402
from unrustle.auth.models import Service  # noqa: E402
from unrustle.auth.providers import reset_providers  # noqa: E402
from unrustle.auth.state import StateStore, set_state_store  # noqa: E402
from unrustle.storage.preferences import set_preference_store  # noqa: E402


@pytest.fixture(autouse=True)
def _auth_env(monkeypatch: pytest.MonkeyPatch):
    """
    Both providers configured, fresh state stores, no preference store.

    Tests that touch preferences request the `prefs` fixture.
    """
    monkeypatch.setenv("AUTH_JWT_SECRET", TEST_SECRET)
    monkeypatch.setenv("AUTH_PUBLIC_BASE_URL", "http://testserver")
    monkeypatch.setenv("TWITCH_CLIENT_ID", "twitch-client")
    monkeypatch.setenv("TWITCH_CLIENT_SECRET", "twitch-secret")
    monkeypatch.setenv("DGG_CLIENT_ID", "dgg-client")
    monkeypatch.setenv("DGG_CLIENT_SECRET", "dgg-secret")
    for name in (
        "AUTH_COOKIE_SECURE",
        "AUTH_SESSION_TTL_SECONDS",
        "TWITCH_REDIRECT_URL",
        "DGG_REDIRECT_URL",
        "TWITCH_COOKIE_NAME",
        "DGG_COOKIE_NAME",
        "POSTGRES_DSN",
        "POSTGRES_HOST",
        "DB_AUTO_MIGRATE",
    ):
        monkeypatch.delenv(name, raising=False)
    load_auth_config.cache_clear()
    reset_providers()
    set_preference_store(None)
    for service in Service:
        set_state_store(StateStore(service))
    yield
    load_auth_config.cache_clear()
    reset_providers()
    set_preference_store(None)


@pytest.fixture
def prefs() -> InMemoryPreferenceStore:
    store = InMemoryPreferenceStore()
    set_preference_store(store)
    return store
