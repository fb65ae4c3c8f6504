# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Environment configuration for the portal.

Everything the auth core needs from the environment is read here once and
frozen into plain dataclasses. The rest of the package receives these values
explicitly instead of calling ``os.getenv`` on every request.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 16
DEFAULT_APP_NAME = "Dashboard"

# Production apex; hosts under it share sessions through a dot-domain cookie.
PRODUCTION_APEX_DOMAIN = "pitchingcoachu.com"


class ConfigError(RuntimeError):
    """Raised when the process is misconfigured (never for bad user input)."""


def normalize_email(email: Optional[str]) -> str:
    return str(email or "").strip().lower()


def _truthy(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True)
class AppLink:
    name: str
    url: str

    def as_dict(self) -> Dict[str, str]:
        return {"name": self.name, "url": self.url}


def default_app_name(index: int, total: int) -> str:
    if total <= 1:
        return DEFAULT_APP_NAME
    return f"{DEFAULT_APP_NAME} {index + 1}"


def parse_apps(raw_apps: Any, fallback_url: Optional[str] = None) -> Tuple[AppLink, ...]:
    """Build the ordered app list from a loose ``apps`` value.

    Entries may name themselves with ``name`` or ``label``; entries without a
    url are dropped. When nothing usable remains, ``fallback_url`` becomes the
    single app.
    """
    entries: List[Tuple[str, str]] = []
    if isinstance(raw_apps, list):
        for item in raw_apps:
            if not isinstance(item, dict):
                continue
            url = str(item.get("url") or "").strip()
            if not url:
                continue
            name = str(item.get("name") or item.get("label") or "").strip()
            entries.append((name, url))

    if not entries:
        url = str(fallback_url or "").strip()
        if not url:
            return ()
        entries.append(("", url))

    total = len(entries)
    return tuple(
        AppLink(name=name or default_app_name(i, total), url=url)
        for i, (name, url) in enumerate(entries)
    )


@dataclass(frozen=True)
class UserSeed:
    """One statically configured user."""

    email: str
    password: str
    apps: Tuple[AppLink, ...]
    name: Optional[str] = None

    @property
    def primary_app_url(self) -> str:
        return self.apps[0].url


class SeedKind(str, Enum):
    JSON_LIST = "json_list"
    SINGLE = "single"
    EMPTY = "empty"


@dataclass(frozen=True)
class UserSeedSource:
    """Static users parsed from ``APP_USERS_JSON`` or the ``AUTH_LOGIN_*`` set."""

    kind: SeedKind
    users: Tuple[UserSeed, ...] = ()

    def find(self, email: str) -> Optional[UserSeed]:
        wanted = normalize_email(email)
        if not wanted:
            return None
        for user in self.users:
            if user.email == wanted:
                return user
        return None

    def __bool__(self) -> bool:
        return bool(self.users)


def _seed_from_mapping(raw: Mapping[str, Any]) -> Optional[UserSeed]:
    email = normalize_email(raw.get("email"))
    password = str(raw.get("password") or "")
    apps = parse_apps(raw.get("apps"), raw.get("appUrl"))
    if not email or not password or not apps:
        return None
    name = str(raw.get("name") or "").strip() or None
    return UserSeed(email=email, password=password, apps=apps, name=name)


def parse_user_seeds(environ: Mapping[str, str]) -> UserSeedSource:
    raw_json = environ.get("APP_USERS_JSON")
    if raw_json:
        try:
            parsed = json.loads(raw_json)
        except ValueError:
            logger.error("APP_USERS_JSON is not valid JSON; static users disabled")
            return UserSeedSource(kind=SeedKind.JSON_LIST)
        if not isinstance(parsed, list):
            logger.error("APP_USERS_JSON must be a JSON list; static users disabled")
            return UserSeedSource(kind=SeedKind.JSON_LIST)

        users: List[UserSeed] = []
        for idx, item in enumerate(parsed):
            seed = _seed_from_mapping(item) if isinstance(item, dict) else None
            if seed is None:
                logger.warning("APP_USERS_JSON entry %d skipped (needs email, password and an app url)", idx)
                continue
            users.append(seed)
        return UserSeedSource(kind=SeedKind.JSON_LIST, users=tuple(users))

    single = _seed_from_mapping(
        {
            "email": environ.get("AUTH_LOGIN_EMAIL"),
            "password": environ.get("AUTH_LOGIN_PASSWORD"),
            "appUrl": environ.get("AUTH_APP_URL"),
            "name": environ.get("AUTH_LOGIN_NAME"),
        }
    )
    if single is not None:
        return UserSeedSource(kind=SeedKind.SINGLE, users=(single,))
    return UserSeedSource(kind=SeedKind.EMPTY)


def _database_url(raw: Optional[str]) -> Optional[str]:
    url = str(raw or "").strip()
    if not url:
        return None
    # SQLAlchemy only knows the "postgresql" dialect name.
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


@dataclass(frozen=True)
class AuthSettings:
    secret: str
    database_url: Optional[str] = None
    seeds: UserSeedSource = field(default_factory=lambda: UserSeedSource(kind=SeedKind.EMPTY))
    cookie_domain: Optional[str] = None
    environment: str = "production"
    resend_api_key: Optional[str] = None
    reset_from_email: str = "onboarding@resend.dev"
    public_app_url: Optional[str] = None

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def database_configured(self) -> bool:
        return bool(self.database_url)

    def validate(self) -> "AuthSettings":
        if not self.secret or len(self.secret) < MIN_SECRET_LENGTH:
            raise ConfigError(f"AUTH_SECRET must be set and at least {MIN_SECRET_LENGTH} characters.")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AuthSettings":
        env = os.environ if environ is None else environ
        return cls(
            secret=env.get("AUTH_SECRET", ""),
            database_url=_database_url(env.get("DATABASE_URL")),
            seeds=parse_user_seeds(env),
            cookie_domain=(env.get("AUTH_COOKIE_DOMAIN") or "").strip() or None,
            environment=(env.get("PCU_ENV") or "production").strip().lower(),
            resend_api_key=(env.get("RESEND_API_KEY") or "").strip() or None,
            reset_from_email=(
                env.get("PASSWORD_RESET_FROM_EMAIL") or env.get("DEMO_REQUEST_FROM_EMAIL") or "onboarding@resend.dev"
            ),
            public_app_url=(
                (env.get("PUBLIC_APP_URL") or env.get("NEXT_PUBLIC_APP_URL") or "").strip().rstrip("/") or None
            ),
        )


def server_settings() -> Dict[str, Any]:
    return {
        "host": os.getenv("PCU_HOST", "0.0.0.0"),
        "port": int(os.getenv("PCU_PORT", "8000")),
        "reload": _truthy(os.getenv("PCU_RELOAD", "false")),
        "log_level": os.getenv("PCU_LOG_LEVEL", "INFO").upper(),
    }
