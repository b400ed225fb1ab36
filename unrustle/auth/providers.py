"""
OAuth2 identity providers.

Both providers implement the same authorization-code flow; Destiny.gg adds a
PKCE-style verifier. The raw verifier is only sent at token exchange, the
authorize redirect carries the derived challenge.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import urlencode

import requests
from pydantic import BaseModel, ValidationError

from unrustle.auth.config import AuthConfig, ProviderConfig, load_auth_config
from unrustle.auth.errors import ProviderExchangeFailure
from unrustle.auth.models import Identity, Service
from unrustle.auth.util import sha256_hex

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Capability set the login/callback routes are written against."""

    service: Service
    uses_verifier: bool

    def authorize_url(self, nonce: str, verifier: Optional[str] = None) -> str:
        """URL to redirect the browser to; `nonce` is sent as `state`."""
        ...

    def exchange_code(self, code: str, verifier: Optional[str] = None) -> str:
        """Trade an authorization code for an access token."""
        ...

    def fetch_identity(self, access_token: str) -> Identity:
        """Look up the user the access token belongs to."""
        ...


class _TokenResponse(BaseModel):
    access_token: str


class _TwitchUser(BaseModel):
    id: str
    login: str
    display_name: Optional[str] = None
    email: Optional[str] = None


class _TwitchUsers(BaseModel):
    data: List[_TwitchUser]


class _DestinyggUser(BaseModel):
    userId: str
    nick: str


class _OAuthProvider:
    """Shared HTTP plumbing; subclasses supply endpoints and payload parsing."""

    service: Service
    uses_verifier = False

    def __init__(self, cfg: ProviderConfig, *, timeout: float = 10.0) -> None:
        self.cfg = cfg
        self.timeout = timeout

    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = requests.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise ProviderExchangeFailure(f"{self.service.label} request failed: {e}", service=self.service) from e
        if not 200 <= response.status_code < 300:
            # Avoid leaking sensitive info; include minimal context.
            raise ProviderExchangeFailure(
                f"{self.service.label} returned status={response.status_code}", service=self.service
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderExchangeFailure(f"{self.service.label} returned invalid JSON", service=self.service) from e
        if not isinstance(data, dict):
            raise ProviderExchangeFailure(f"{self.service.label} returned unexpected payload", service=self.service)
        return data

    def _access_token(self, data: Dict[str, Any]) -> str:
        try:
            token = _TokenResponse.model_validate(data).access_token.strip()
        except ValidationError as e:
            raise ProviderExchangeFailure(
                f"{self.service.label} token response missing access_token", service=self.service
            ) from e
        if not token:
            raise ProviderExchangeFailure(f"{self.service.label} returned empty access_token", service=self.service)
        return token


class TwitchProvider(_OAuthProvider):
    service = Service.TWITCH
    uses_verifier = False

    AUTHORIZE_URL = "https://id.twitch.tv/oauth2/authorize"
    TOKEN_URL = "https://id.twitch.tv/oauth2/token"
    USERS_URL = "https://api.twitch.tv/helix/users"
    SCOPE = "user:read:email"

    def authorize_url(self, nonce: str, verifier: Optional[str] = None) -> str:
        params = {
            "client_id": self.cfg.client_id,
            "redirect_uri": self.cfg.redirect_url,
            "response_type": "code",
            "scope": self.SCOPE,
            "state": nonce,
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str, verifier: Optional[str] = None) -> str:
        data = self._request(
            "POST",
            self.TOKEN_URL,
            data={
                "client_id": self.cfg.client_id,
                "client_secret": self.cfg.client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.cfg.redirect_url,
            },
        )
        return self._access_token(data)

    def fetch_identity(self, access_token: str) -> Identity:
        data = self._request(
            "GET",
            self.USERS_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Client-Id": self.cfg.client_id or "",
            },
        )
        try:
            users = _TwitchUsers.model_validate(data).data
        except ValidationError as e:
            raise ProviderExchangeFailure("Twitch returned a malformed user payload", service=self.service) from e
        if not users:
            raise ProviderExchangeFailure("Twitch returned no user for token", service=self.service)
        user = users[0]
        return Identity(
            subject_id=user.id,
            name=user.login,
            display_name=user.display_name or user.login,
            email=user.email or None,
        )


class DestinyggProvider(_OAuthProvider):
    """
    Destiny.gg OAuth with its PKCE variant.

    The challenge binds the verifier to the app secret:
    base64(sha256_hex(verifier + sha256_hex(client_secret))).
    """

    service = Service.DESTINYGG
    uses_verifier = True

    AUTHORIZE_URL = "https://www.destiny.gg/oauth/authorize"
    TOKEN_URL = "https://www.destiny.gg/oauth/token"
    USERINFO_URL = "https://www.destiny.gg/api/userinfo"

    def code_challenge(self, verifier: str) -> str:
        digest = sha256_hex(verifier + sha256_hex(self.cfg.client_secret or ""))
        return base64.b64encode(digest.encode("ascii")).decode("ascii")

    def authorize_url(self, nonce: str, verifier: Optional[str] = None) -> str:
        if not verifier:
            raise ValueError("Destiny.gg login requires a code verifier")
        params = {
            "response_type": "code",
            "client_id": self.cfg.client_id,
            "redirect_uri": self.cfg.redirect_url,
            "state": nonce,
            "code_challenge": self.code_challenge(verifier),
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str, verifier: Optional[str] = None) -> str:
        if not verifier:
            raise ProviderExchangeFailure("Missing code verifier", service=self.service)
        data = self._request(
            "GET",
            self.TOKEN_URL,
            params={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.cfg.client_id,
                "redirect_uri": self.cfg.redirect_url,
                "code_verifier": verifier,
            },
        )
        return self._access_token(data)

    def fetch_identity(self, access_token: str) -> Identity:
        data = self._request("GET", self.USERINFO_URL, params={"token": access_token})
        # Some deployments return numeric ids.
        if isinstance(data.get("userId"), int):
            data = {**data, "userId": str(data["userId"])}
        try:
            user = _DestinyggUser.model_validate(data)
        except ValidationError as e:
            raise ProviderExchangeFailure(
                "Destiny.gg returned a malformed userinfo payload", service=self.service
            ) from e
        return Identity(subject_id=user.userId, name=user.nick, display_name=user.nick)


_providers: Dict[Service, IdentityProvider] = {}


def build_provider(service: Service, cfg: Optional[AuthConfig] = None) -> IdentityProvider:
    cfg = cfg or load_auth_config()
    pcfg = cfg.provider(service)
    if service is Service.TWITCH:
        return TwitchProvider(pcfg, timeout=cfg.http_timeout_seconds)
    return DestinyggProvider(pcfg, timeout=cfg.http_timeout_seconds)


def get_provider(service: Service) -> IdentityProvider:
    """
    Get the provider for `service` (singleton per service).

    Returns a provider configured from environment variables.
    """
    provider = _providers.get(service)
    if provider is None:
        provider = build_provider(service)
        _providers[service] = provider
    return provider


def set_provider(provider: IdentityProvider) -> None:
    """Set provider instance (for testing)."""
    _providers[provider.service] = provider


def reset_providers() -> None:
    _providers.clear()
