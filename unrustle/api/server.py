"""
Log-deletion opt-out web server.

Users sign in with Twitch or Destiny.gg and toggle whether their chat logs may
be retained. Each provider gets the same route group:

    /<p>/login  /<p>/callback  /<p>/logout  /<p>/delete  /<p>/undelete
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import psycopg
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from unrustle.auth.config import AuthConfig, load_auth_config
from unrustle.auth.deps import SessionCheck, authenticate_request
from unrustle.auth.errors import InvalidSession, InvalidState, ProviderExchangeFailure, Unauthorized
from unrustle.auth.models import Service, SessionClaims
from unrustle.auth.providers import get_provider
from unrustle.auth.session import clear_session_cookie_kwargs, issue_session, session_cookie_kwargs
from unrustle.auth.state import get_state_store
from unrustle.auth.util import random_token, short_nonce
from unrustle.storage.preferences import StorageUnavailable, get_preference_store

logger = logging.getLogger(__name__)

TITLE = "UnRustleLogs"

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"
ASSETS_DIR = BASE_DIR / "assets"

app = FastAPI(title=TITLE)
app.mount("/assets", StaticFiles(directory=ASSETS_DIR), name="assets")
templates = Jinja2Templates(directory=TEMPLATES_DIR)


@dataclass
class ProviderStatus:
    name: str = ""
    email: Optional[str] = None
    logged_in: bool = False
    is_deleting: bool = False


@dataclass
class IndexPayload:
    title: str = TITLE
    twitch: ProviderStatus = field(default_factory=ProviderStatus)
    destinygg: ProviderStatus = field(default_factory=ProviderStatus)
    delete_status: str = ""


def _logout_path(service: Service) -> str:
    return f"/{service.route}/logout"


def _redirect(url: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _unauthorized(message: str) -> JSONResponse:
    # No `WWW-Authenticate`: browsers would pop a basic-auth dialog.
    return JSONResponse(status_code=401, content={"message": message})


@app.on_event("startup")
def _startup_maybe_create_schema() -> None:
    """Create the preference table when DB_AUTO_MIGRATE=1. Failures are logged, never raised."""
    from unrustle.storage.schema import maybe_bootstrap_on_startup

    did_attempt, msg = maybe_bootstrap_on_startup()
    if did_attempt:
        logger.info("DB schema: %s", msg)


@app.on_event("startup")
def _startup_log_auth_config() -> None:
    cfg = load_auth_config()
    if not cfg.jwt_secret:
        logger.error("AUTH_JWT_SECRET is not set; sessions cannot be issued or verified")
    for service in Service:
        pcfg = cfg.provider(service)
        logger.info(
            "%s login: enabled=%s cookie=%s redirect=%s",
            service.label,
            pcfg.enabled,
            pcfg.cookie_name,
            pcfg.redirect_url,
        )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise
    process_time = time.time() - start_time
    logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
    response.headers["X-Frame-Options"] = "DENY"
    return response


# ---- Error translation ----


@app.exception_handler(InvalidState)
async def _invalid_state_handler(request: Request, exc: InvalidState) -> Response:
    logger.warning("%s %s: %s", request.method, request.url.path, str(exc))
    return _redirect(_logout_path(exc.service) if exc.service else "/")


@app.exception_handler(ProviderExchangeFailure)
async def _provider_failure_handler(request: Request, exc: ProviderExchangeFailure) -> Response:
    logger.error("%s %s: %s", request.method, request.url.path, str(exc))
    return _redirect("/")


@app.exception_handler(InvalidSession)
async def _invalid_session_handler(request: Request, exc: InvalidSession) -> Response:
    logger.warning("%s %s: %s", request.method, request.url.path, str(exc))
    resp = _unauthorized("error")
    if exc.service is not None:
        cfg = load_auth_config()
        resp.set_cookie(**clear_session_cookie_kwargs(cfg, cfg.provider(exc.service)))
    return resp


@app.exception_handler(Unauthorized)
async def _unauthorized_handler(request: Request, exc: Unauthorized) -> Response:
    logger.info("%s %s: %s", request.method, request.url.path, str(exc))
    return _unauthorized("Unauthorized")


@app.exception_handler(StorageUnavailable)
@app.exception_handler(psycopg.Error)
async def _storage_error_handler(request: Request, exc: Exception) -> Response:
    logger.error("%s %s: preference storage failed: %s", request.method, request.url.path, str(exc))
    return JSONResponse(status_code=503, content={"message": "Storage unavailable"})


# ---- Session dependency ----


def require_session(service: Service) -> Callable[[Request], SessionClaims]:
    """Dependency for endpoints that act on the signed-in user of `service`."""

    def _dependency(request: Request) -> SessionClaims:
        check = authenticate_request(request, service)
        if check.invalid:
            raise InvalidSession(f"{service.label} session is invalid", service=service)
        if check.claims is None:
            raise Unauthorized(f"No {service.label} session", service=service)
        return check.claims

    return _dependency


# ---- Routes ----


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


def _status_for(service: Service, check: SessionCheck) -> ProviderStatus:
    status = ProviderStatus()
    if check.claims is None:
        return status
    status.name = check.claims.display_name
    status.email = check.claims.email
    status.logged_in = True
    try:
        status.is_deleting = get_preference_store().exists(check.claims.name, service)
    except (StorageUnavailable, psycopg.Error) as e:
        # Page still renders; toggles will report the storage error.
        logger.warning("%s preference lookup failed for %s: %s", service.label, check.claims.display_name, str(e))
    return status


@app.get("/")
def index(request: Request, delete: Optional[str] = Query(None)) -> Response:
    """Render login and deletion status for both providers."""
    cfg = load_auth_config()
    checks = {service: authenticate_request(request, service) for service in Service}

    payload = IndexPayload(
        twitch=_status_for(Service.TWITCH, checks[Service.TWITCH]),
        destinygg=_status_for(Service.DESTINYGG, checks[Service.DESTINYGG]),
        delete_status=delete or "",
    )
    resp = templates.TemplateResponse(request, "index.html", {"payload": payload})
    # Invalid cookies are cleared, never just ignored.
    for service, check in checks.items():
        if check.invalid:
            resp.set_cookie(**clear_session_cookie_kwargs(cfg, cfg.provider(service)))
    return resp


def _login_unavailable(cfg: AuthConfig, service: Service) -> Optional[JSONResponse]:
    # Without a signing secret a completed login could not be turned into a session.
    if not cfg.provider(service).enabled or not cfg.jwt_secret:
        return JSONResponse(status_code=503, content={"message": f"{service.label} login is not configured"})
    return None


def _register_provider_routes(service: Service) -> None:
    prefix = f"/{service.route}"

    def login() -> Response:
        cfg = load_auth_config()
        unavailable = _login_unavailable(cfg, service)
        if unavailable is not None:
            return unavailable
        provider = get_provider(service)
        verifier = random_token(32) if provider.uses_verifier else None
        nonce = get_state_store(service).issue(verifier)
        return _redirect(provider.authorize_url(nonce, verifier))

    def callback(code: Optional[str] = Query(None), state: Optional[str] = Query(None)) -> Response:
        cfg = load_auth_config()
        unavailable = _login_unavailable(cfg, service)
        if unavailable is not None:
            return unavailable

        verifier, found = get_state_store(service).consume(state)
        if not found:
            raise InvalidState(
                f"{service.label} callback with unknown or expired state {short_nonce(state or '')!r}",
                service=service,
            )
        if not code:
            # The user declined at the provider.
            raise InvalidState(f"{service.label} callback without code", service=service)

        provider = get_provider(service)
        token = provider.exchange_code(code, verifier)
        identity = provider.fetch_identity(token)

        session_value = issue_session(
            identity,
            service,
            secret=cfg.jwt_secret or "",
            ttl_seconds=cfg.session_ttl_seconds,
        )
        logger.info("%s logged in via %s", identity.display_name, service.label)
        resp = _redirect("/")
        resp.set_cookie(**session_cookie_kwargs(cfg, cfg.provider(service), session_value))
        return resp

    def logout() -> Response:
        cfg = load_auth_config()
        resp = _redirect("/")
        resp.set_cookie(**clear_session_cookie_kwargs(cfg, cfg.provider(service)))
        return resp

    def delete(user: SessionClaims = Depends(require_session(service))) -> Response:
        logger.info("%s requested log deletion (%s)", user.display_name, service.label)
        get_preference_store().add_user(user.name, service)
        return _redirect("/?delete=true")

    def undelete(user: SessionClaims = Depends(require_session(service))) -> Response:
        logger.info("%s requested to stop log deletion (%s)", user.display_name, service.label)
        get_preference_store().delete_user(user.name, service)
        return _redirect("/?delete=false")

    app.add_api_route(f"{prefix}/login", login, methods=["GET"], name=f"{service.route}_login")
    app.add_api_route(f"{prefix}/callback", callback, methods=["GET"], name=f"{service.route}_callback")
    app.add_api_route(f"{prefix}/logout", logout, methods=["GET"], name=f"{service.route}_logout")
    app.add_api_route(f"{prefix}/delete", delete, methods=["GET"], name=f"{service.route}_delete")
    app.add_api_route(f"{prefix}/undelete", undelete, methods=["GET"], name=f"{service.route}_undelete")


for _service in Service:
    _register_provider_routes(_service)


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
