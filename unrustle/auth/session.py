from __future__ import annotations

import base64
import binascii
import time
from typing import Any, Dict, Optional

import jwt  # PyJWT

from unrustle.auth.config import AuthConfig, ProviderConfig
from unrustle.auth.errors import InvalidSession
from unrustle.auth.models import Identity, Service, SessionClaims
from unrustle.auth.util import b64url

SESSION_ALGORITHM = "HS256"


def issue_session(
    identity: Identity,
    service: Service,
    *,
    secret: str,
    ttl_seconds: int,
    now: Optional[int] = None,
) -> str:
    """
    Mint a signed session token for a verified provider identity.

    The token is self-contained: anyone holding `secret` can re-derive the claims.
    """
    if not secret:
        raise ValueError("Session signing secret is not configured")
    iat = int(now if now is not None else time.time())
    payload: Dict[str, Any] = {
        "id": identity.subject_id,
        "name": identity.name,
        "displayName": identity.display_name,
        "service": service.value,
        "iat": iat,
        "exp": iat + int(ttl_seconds),
    }
    # Keep the cookie small; only Twitch supplies an email.
    if identity.email:
        payload["email"] = identity.email
    return jwt.encode(payload, secret, algorithm=SESSION_ALGORITHM)


def _is_canonical_jws(token: str) -> bool:
    """
    True when `token` has three base64url segments in canonical form.

    base64 decoding ignores the unused low bits of a segment's last character, so
    two spellings can decode to the same signature. Only the spelling we emit is
    accepted.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return False
    for part in parts:
        try:
            raw = base64.urlsafe_b64decode(part + "=" * (-len(part) % 4))
        except (binascii.Error, ValueError):
            return False
        if b64url(raw) != part:
            return False
    return True


def verify_session(
    token: Optional[str],
    *,
    secret: str,
    service: Optional[Service] = None,
) -> SessionClaims:
    """
    Validate signature and expiry of a session token and return its claims.

    Raises InvalidSession on any failure. When `service` is given, a token minted
    for the other provider is rejected too.
    """
    if not token:
        raise InvalidSession("Empty session token", service=service)
    if not _is_canonical_jws(token):
        raise InvalidSession("Malformed session token", service=service)
    if not secret:
        raise InvalidSession("Session signing secret is not configured", service=service)
    try:
        data = jwt.decode(
            token,
            key=secret,
            algorithms=[SESSION_ALGORITHM],
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise InvalidSession("Session expired", service=service) from e
    except jwt.InvalidTokenError as e:
        raise InvalidSession(f"Invalid session token: {e}", service=service) from e

    subject_id = str(data.get("id") or "").strip()
    name = str(data.get("name") or "").strip()
    if not subject_id or not name:
        raise InvalidSession("Session is missing identity claims", service=service)
    try:
        token_service = Service(str(data.get("service") or ""))
    except ValueError as e:
        raise InvalidSession("Session has an unknown service", service=service) from e
    if service is not None and token_service is not service:
        raise InvalidSession("Session was issued for another service", service=service)

    email = data.get("email")
    return SessionClaims(
        subject_id=subject_id,
        name=name,
        display_name=str(data.get("displayName") or "").strip() or name,
        service=token_service,
        issued_at=int(data["iat"]),
        expires_at=int(data["exp"]),
        email=str(email) if email else None,
    )


def session_cookie_kwargs(cfg: AuthConfig, provider: ProviderConfig, value: str) -> dict:
    return {
        "key": provider.cookie_name,
        "value": value,
        "max_age": cfg.session_ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def clear_session_cookie_kwargs(cfg: AuthConfig, provider: ProviderConfig) -> dict:
    return {
        "key": provider.cookie_name,
        "value": "",
        "max_age": 0,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }
