from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from unrustle.auth.config import load_auth_config
from unrustle.auth.errors import InvalidSession
from unrustle.auth.models import Service, SessionClaims
from unrustle.auth.session import verify_session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionCheck:
    """
    Result of checking one provider's session cookie.

    `invalid` means a cookie was presented but rejected; the caller must clear it.
    """

    claims: Optional[SessionClaims] = None
    invalid: bool = False

    @property
    def ok(self) -> bool:
        return self.claims is not None


def authenticate_request(request: Request, service: Service) -> SessionCheck:
    """
    Validate the session cookie for `service` on an inbound request.

    A missing cookie is not an error. Any present-but-invalid cookie fails closed.
    """
    cfg = load_auth_config()
    provider = cfg.provider(service)
    value = request.cookies.get(provider.cookie_name)
    if not value:
        return SessionCheck()
    try:
        claims = verify_session(value, secret=cfg.jwt_secret or "", service=service)
    except InvalidSession as e:
        logger.warning("%s session rejected on %s: %s", service.label, request.url.path, str(e))
        return SessionCheck(invalid=True)
    return SessionCheck(claims=claims)
