from __future__ import annotations

from typing import Optional

from unrustle.auth.models import Service


class AuthError(Exception):
    """Base class for login/session failures. None of them are retried."""

    def __init__(self, message: str, *, service: Optional[Service] = None) -> None:
        super().__init__(message)
        self.service = service


class InvalidState(AuthError):
    """Callback `state` was never issued, already consumed, or expired."""


class ProviderExchangeFailure(AuthError):
    """Code exchange or identity fetch failed (network, non-2xx, malformed payload)."""


class InvalidSession(AuthError):
    """Session token has a bad signature, is malformed, or is expired."""


class Unauthorized(AuthError):
    """No session presented on an endpoint that requires one."""
