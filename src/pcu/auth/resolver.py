# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Session lookup across every cookie name the portal has ever used.

The primary cookie is host-only. The shared cookie carries the same token on
the apex domain so sibling subdomains see one session. Retired names are still
read until the browsers holding them let them expire.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from pcu.auth.session import SESSION_TTL_SECONDS, SessionClaims, SessionCodec
from pcu.config import PRODUCTION_APEX_DOMAIN

SESSION_COOKIE_NAME = "pcu_portal_session"
DOMAIN_SESSION_COOKIE_NAME = "pcu_portal_session_shared"
# Oldest last.
LEGACY_SESSION_COOKIE_NAMES: Tuple[str, ...] = ("pcu_session",)


@dataclass(frozen=True)
class CookieDecoder:
    cookie_name: str
    decode: Callable[[str], Optional[SessionClaims]]

    def __call__(self, cookies: Mapping[str, str]) -> Optional[SessionClaims]:
        token = cookies.get(self.cookie_name)
        if not token:
            return None
        return self.decode(token)


def default_decoders(codec: SessionCodec) -> Tuple[CookieDecoder, ...]:
    names = (SESSION_COOKIE_NAME, DOMAIN_SESSION_COOKIE_NAME) + LEGACY_SESSION_COOKIE_NAMES
    return tuple(CookieDecoder(name, codec.verify) for name in names)


class SessionResolver:
    def __init__(self, decoders: Sequence[CookieDecoder]) -> None:
        self.decoders = tuple(decoders)

    @classmethod
    def for_codec(cls, codec: SessionCodec) -> "SessionResolver":
        return cls(default_decoders(codec))

    @property
    def cookie_names(self) -> Tuple[str, ...]:
        return tuple(d.cookie_name for d in self.decoders)

    def resolve_source(self, cookies: Mapping[str, str]) -> Tuple[Optional[SessionClaims], Optional[str]]:
        for decoder in self.decoders:
            claims = decoder(cookies)
            if claims is not None:
                return claims, decoder.cookie_name
        return None, None

    def resolve(self, cookies: Mapping[str, str]) -> Optional[SessionClaims]:
        return self.resolve_source(cookies)[0]


def _dot_domain(domain: str) -> str:
    return "." + domain.strip().strip(".").lower()


@dataclass(frozen=True)
class CookiePolicy:
    secure: bool = True
    domain_override: Optional[str] = None
    apex_domain: str = PRODUCTION_APEX_DOMAIN
    max_age: int = SESSION_TTL_SECONDS

    def cookie_domain(self, hostname: Optional[str]) -> Optional[str]:
        """Leading-dot domain for the shared cookie, or None when only host cookies apply."""
        if self.domain_override and self.domain_override.strip(". "):
            return _dot_domain(self.domain_override)
        host = (hostname or "").strip().lower().rstrip(".")
        apex = self.apex_domain.lower()
        if host == apex or host.endswith("." + apex):
            return _dot_domain(apex)
        return None

    def session_cookie_settings(self) -> Dict[str, Any]:
        return {
            "max_age": self.max_age,
            "path": "/",
            "httponly": True,
            "secure": self.secure,
            "samesite": "lax",
        }

    def domain_cookie_settings(self, hostname: Optional[str]) -> Optional[Dict[str, Any]]:
        domain = self.cookie_domain(hostname)
        if domain is None:
            return None
        return {**self.session_cookie_settings(), "domain": domain}

    def clear_cookie_settings(self, hostname: Optional[str]) -> Dict[str, Dict[str, Any]]:
        """Per cookie name, the attributes that expire it immediately."""
        expired = {**self.session_cookie_settings(), "max_age": 0}
        out = {SESSION_COOKIE_NAME: expired}
        domain_settings = self.domain_cookie_settings(hostname)
        if domain_settings is not None:
            out[DOMAIN_SESSION_COOKIE_NAME] = {**domain_settings, "max_age": 0}
        for legacy_name in LEGACY_SESSION_COOKIE_NAMES:
            out[legacy_name] = expired
        return out
