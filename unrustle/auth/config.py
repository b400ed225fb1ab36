from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from unrustle.auth.models import Service

STATE_TTL_SECONDS = 5 * 60
DEFAULT_SESSION_TTL_SECONDS = 30 * 24 * 60 * 60


@dataclass(frozen=True)
class ProviderConfig:
    service: Service
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_url: Optional[str]
    cookie_name: str

    @property
    def enabled(self) -> bool:
        """A provider is enabled once its OAuth app credentials and callback are configured."""
        return bool(self.client_id and self.client_secret and self.redirect_url)


@dataclass(frozen=True)
class AuthConfig:
    # Session configuration
    jwt_secret: Optional[str]  # Required for session signing
    session_ttl_seconds: int
    cookie_secure: bool
    public_base_url: Optional[str]

    # Outbound calls to the identity providers
    http_timeout_seconds: float

    twitch: ProviderConfig
    destinygg: ProviderConfig

    def provider(self, service: Service) -> ProviderConfig:
        return self.twitch if service is Service.TWITCH else self.destinygg


def _env(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def _provider_config(
    service: Service,
    *,
    prefix: str,
    public_base_url: Optional[str],
    default_cookie: str,
) -> ProviderConfig:
    redirect_url = _env(f"{prefix}_REDIRECT_URL")
    if not redirect_url and public_base_url:
        redirect_url = f"{public_base_url.rstrip('/')}/{service.route}/callback"
    return ProviderConfig(
        service=service,
        client_id=_env(f"{prefix}_CLIENT_ID"),
        client_secret=_env(f"{prefix}_CLIENT_SECRET"),
        redirect_url=redirect_url,
        cookie_name=_env(f"{prefix}_COOKIE_NAME") or default_cookie,
    )


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    A provider is only offered when its client id, secret and redirect URL are set.
    The redirect URL defaults to `<AUTH_PUBLIC_BASE_URL>/<route>/callback`.
    """
    public_base_url = _env("AUTH_PUBLIC_BASE_URL")
    cookie_secure_env = (_env("AUTH_COOKIE_SECURE") or "").lower()
    if cookie_secure_env in ("1", "true", "yes", "on"):
        cookie_secure = True
    elif cookie_secure_env in ("0", "false", "no", "off"):
        cookie_secure = False
    else:
        # Default: secure cookies when base URL is https; otherwise allow local dev.
        cookie_secure = True if (public_base_url or "").startswith("https://") else False

    try:
        ttl = int(float(_env("AUTH_SESSION_TTL_SECONDS") or DEFAULT_SESSION_TTL_SECONDS))
    except (ValueError, OverflowError):
        ttl = DEFAULT_SESSION_TTL_SECONDS
    if ttl <= 60:
        ttl = 60

    try:
        timeout = float(_env("PROVIDER_HTTP_TIMEOUT_SECONDS") or 10)
    except ValueError:
        timeout = 10.0
    if timeout <= 0:
        timeout = 10.0

    return AuthConfig(
        jwt_secret=_env("AUTH_JWT_SECRET"),
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
        public_base_url=public_base_url,
        http_timeout_seconds=timeout,
        twitch=_provider_config(
            Service.TWITCH, prefix="TWITCH", public_base_url=public_base_url, default_cookie="twitch_session"
        ),
        destinygg=_provider_config(
            Service.DESTINYGG, prefix="DGG", public_base_url=public_base_url, default_cookie="dgg_session"
        ),
    )
