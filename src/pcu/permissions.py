# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request

from pcu.auth.resolver import CookiePolicy, SessionResolver
from pcu.auth.session import SessionClaims
from pcu.config import AuthSettings


def cookie_policy(settings: AuthSettings) -> CookiePolicy:
    return CookiePolicy(secure=not settings.is_development, domain_override=settings.cookie_domain)


def load_session_from_request(request: Request) -> Optional[SessionClaims]:
    resolver: SessionResolver = request.app.state.resolver
    return resolver.resolve(request.cookies)


def current_session_optional(request: Request) -> Optional[SessionClaims]:
    claims = getattr(request.state, "session", None)
    if claims is not None:
        return claims
    return load_session_from_request(request)


def require_session(request: Request) -> SessionClaims:
    claims = current_session_optional(request)
    if claims:
        return claims
    raise HTTPException(status_code=303, headers={"Location": "/login"})
