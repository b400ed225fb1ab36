from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Service(str, Enum):
    """Identity provider tag, as stored in the preference table and session claims."""

    # Downstream log processors match these exact values.
    TWITCH = "twtch"
    DESTINYGG = "destinygg"

    @property
    def route(self) -> str:
        return "twitch" if self is Service.TWITCH else "dgg"

    @property
    def label(self) -> str:
        return "Twitch" if self is Service.TWITCH else "Destiny.gg"


@dataclass(frozen=True)
class PendingAuth:
    """Outstanding authorization attempt held by a StateStore."""

    nonce: str
    service: Service
    created_at: float
    expires_at: float
    verifier: Optional[str] = None  # Destiny.gg only


@dataclass(frozen=True)
class Identity:
    """
    Identity returned by a provider after a successful code exchange.

    `name` is the provider login (Twitch `login`, Destiny.gg `nick`) and keys the
    deletion preference. `email` is only populated by Twitch; Destiny.gg never
    shares it, so it is None there rather than an empty string.
    """

    subject_id: str
    name: str
    display_name: str
    email: Optional[str] = None


@dataclass(frozen=True)
class SessionClaims:
    """Claims carried by a signed session cookie."""

    subject_id: str
    name: str
    display_name: str
    service: Service
    issued_at: int
    expires_at: int
    email: Optional[str] = None
