# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from pcu.auth.db import AuthStore
from pcu.auth.reset import ResetTokenService
from pcu.auth.resolver import DOMAIN_SESSION_COOKIE_NAME, SESSION_COOKIE_NAME, SessionResolver
from pcu.auth.session import SessionCodec
from pcu.auth.users import CredentialStore
from pcu.config import AuthSettings, ConfigError
from pcu.mailer import send_password_reset_email
from pcu.permissions import cookie_policy, current_session_optional, require_session

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

MIN_PASSWORD_LENGTH = 8
INVALID_CREDENTIALS = "Invalid credentials."
INVALID_RESET_TOKEN = "Invalid or expired reset token."
RESET_NEEDS_DATABASE = "Password reset requires DATABASE_URL configuration."

router = APIRouter()


class LoginPayload(BaseModel):
    email: str = ""
    password: str = ""


class ForgotPayload(BaseModel):
    email: str = ""


class ResetPayload(BaseModel):
    token: str = ""
    password: str = ""


def _render(request: Request, template_name: str, ctx: Optional[dict] = None):
    """TemplateResponse wrapper injecting the current session."""
    base_ctx = {"session": getattr(request.state, "session", None)}
    return templates.TemplateResponse(request, template_name, {**base_ctx, **(ctx or {})})


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


# ------------------ API ------------------


@router.post("/api/auth/login")
def login_post(request: Request, body: LoginPayload):
    email = body.email.strip()
    password = body.password
    if not email or not password:
        return _error("Email and password are required.", 400)

    credentials: CredentialStore = request.app.state.credentials
    claims = credentials.validate_credentials(email, password)
    if not claims:
        return _error(INVALID_CREDENTIALS, 401)

    codec: SessionCodec = request.app.state.codec
    token = codec.mint(claims)
    policy = request.app.state.cookie_policy

    resp = JSONResponse({"ok": True})
    resp.set_cookie(SESSION_COOKIE_NAME, token, **policy.session_cookie_settings())
    domain_settings = policy.domain_cookie_settings(request.url.hostname)
    if domain_settings is not None:
        resp.set_cookie(DOMAIN_SESSION_COOKIE_NAME, token, **domain_settings)
    return resp


@router.post("/api/auth/logout")
def logout_post(request: Request):
    resp = JSONResponse({"ok": True})
    policy = request.app.state.cookie_policy
    for name, settings in policy.clear_cookie_settings(request.url.hostname).items():
        resp.set_cookie(name, "", **settings)
    return resp


@router.get("/api/auth/session")
def session_get(request: Request):
    claims = current_session_optional(request)
    if not claims:
        return {"authenticated": False}
    return {
        "authenticated": True,
        "name": claims.name,
        "email": claims.email,
        "apps": [app.as_dict() for app in claims.apps],
    }


@router.post("/api/auth/forgot-password")
def forgot_password_post(request: Request, body: ForgotPayload):
    email = body.email.strip().lower()
    if not email:
        return _error("Email is required.", 400)

    reset_service: Optional[ResetTokenService] = request.app.state.reset_service
    if reset_service is None:
        return _error(RESET_NEEDS_DATABASE, 500)

    try:
        issued = reset_service.issue(email)
    except SQLAlchemyError:
        logger.exception("Forgot-password request failed")
        return _error("Forgot-password request failed.", 500)

    # Same answer whether or not the account exists or the email went out.
    if issued is not None:
        settings: AuthSettings = request.app.state.settings
        origin = settings.public_app_url or str(request.base_url).rstrip("/")
        reset_url = f"{origin}/reset-password?token={quote(issued.token, safe='')}"
        request.app.state.send_reset_email(settings, to_email=issued.email, reset_url=reset_url)
    return {"ok": True}


@router.post("/api/auth/reset-password")
def reset_password_post(request: Request, body: ResetPayload):
    token = body.token.strip()
    password = body.password
    if not token or not password:
        return _error("Token and password are required.", 400)
    if len(password) < MIN_PASSWORD_LENGTH:
        return _error(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.", 400)

    reset_service: Optional[ResetTokenService] = request.app.state.reset_service
    if reset_service is None:
        return _error(RESET_NEEDS_DATABASE, 500)

    if not reset_service.redeem(token, password):
        return _error(INVALID_RESET_TOKEN, 400)
    return {"ok": True}


# ------------------ Pages ------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request):
    target = "/portal" if getattr(request.state, "session", None) else "/login"
    return RedirectResponse(url=target, status_code=303)


@router.get("/login", response_class=HTMLResponse)
def login_get(request: Request):
    if getattr(request.state, "session", None):
        return RedirectResponse(url="/portal", status_code=303)
    return _render(request, "login.html")


@router.get("/forgot-password", response_class=HTMLResponse)
def forgot_password_get(request: Request):
    return _render(request, "forgot_password.html")


@router.get("/reset-password", response_class=HTMLResponse)
def reset_password_get(request: Request, token: str = ""):
    return _render(request, "reset_password.html", {"token": token})


@router.get("/portal", response_class=HTMLResponse)
def portal(request: Request, app: str = "0", session=Depends(require_session)):
    try:
        selected = int(app)
    except ValueError:
        selected = 0
    if not 0 <= selected < len(session.apps):
        selected = 0
    return _render(
        request,
        "portal.html",
        {
            "apps": list(enumerate(session.apps)),
            "selected": selected,
            "selected_app": session.apps[selected],
        },
    )


@router.get("/tutorials", response_class=HTMLResponse)
def tutorials(request: Request, session=Depends(require_session)):
    return _render(request, "tutorials.html")


# ------------------ Factory ------------------


def create_app(
    settings: Optional[AuthSettings] = None,
    *,
    store: Optional[AuthStore] = None,
    send_reset_email: Callable[..., bool] = send_password_reset_email,
) -> FastAPI:
    """Build the portal app; configuration problems fail here, not per request."""
    settings = (settings or AuthSettings.from_env()).validate()
    if store is None and settings.database_configured:
        store = AuthStore.from_url(settings.database_url)

    codec = SessionCodec(settings.secret)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if store is not None:
            store.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.codec = codec
    app.state.resolver = SessionResolver.for_codec(codec)
    app.state.cookie_policy = cookie_policy(settings)
    app.state.credentials = CredentialStore(settings.seeds, store)
    app.state.reset_service = ResetTokenService(store, seeds=settings.seeds.users) if store else None
    app.state.send_reset_email = send_reset_email

    @app.middleware("http")
    async def _session_middleware(request: Request, call_next):
        request.state.session = current_session_optional(request)
        return await call_next(request)

    @app.exception_handler(ConfigError)
    async def _config_error(request: Request, exc: ConfigError):
        logger.error("Configuration error: %s", exc)
        return _error("Server authentication is not configured.", 500)

    app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")
    app.include_router(router)
    return app
