# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from pcu.auth.db import AuthStore, UserRow
from pcu.auth.passwords import hash_password, needs_rehash, verify_password
from pcu.auth.session import SessionClaims
from pcu.config import AppLink, ConfigError, UserSeedSource, normalize_email, parse_apps

logger = logging.getLogger(__name__)


class LoginFailure(str, Enum):
    UNKNOWN_USER = "unknown_user"
    BAD_PASSWORD = "bad_password"
    NO_APPS = "no_apps"


@dataclass(frozen=True)
class LoginCheck:
    claims: Optional[SessionClaims] = None
    failure: Optional[LoginFailure] = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


class CredentialStore:
    """Validates logins against the database first, then the static seed users."""

    def __init__(self, seeds: UserSeedSource, store: Optional[AuthStore] = None) -> None:
        self.seeds = seeds
        self.store = store

    def _apps_for(self, row: UserRow) -> Tuple[AppLink, ...]:
        # Configured app lists override the single app_url column.
        seed = self.seeds.find(row.email)
        if seed is not None and seed.apps:
            return seed.apps
        return parse_apps(None, row.app_url)

    def _check_database(self, email: str, password: str) -> Optional[LoginCheck]:
        """None means "not decided here", so the seed users get a chance."""
        if self.store is None:
            return None
        try:
            self.store.ensure_schema_ready(self.seeds.users)
            row = self.store.get_user(email)
        except SQLAlchemyError:
            logger.exception("Auth database unavailable; falling back to static users")
            return None
        if row is None:
            return None

        if not verify_password(row.password_hash, password):
            return LoginCheck(failure=LoginFailure.BAD_PASSWORD)

        apps = self._apps_for(row)
        if not apps:
            return LoginCheck(failure=LoginFailure.NO_APPS)

        if needs_rehash(row.password_hash):
            try:
                self.store.set_password_hash(row.email, hash_password(password))
                logger.info("Upgraded legacy plaintext password for %s", row.email)
            except SQLAlchemyError:
                logger.exception("Could not upgrade legacy password hash for %s", row.email)

        return LoginCheck(claims=SessionClaims(email=row.email, apps=apps, name=row.name or None))

    def _check_seeds(self, email: str, password: str) -> LoginCheck:
        seed = self.seeds.find(email)
        if seed is None:
            return LoginCheck(failure=LoginFailure.UNKNOWN_USER)
        # Static config holds the password itself.
        if not hmac.compare_digest(seed.password.encode("utf-8"), password.encode("utf-8")):
            return LoginCheck(failure=LoginFailure.BAD_PASSWORD)
        return LoginCheck(claims=SessionClaims(email=seed.email, apps=seed.apps, name=seed.name))

    def check_credentials(self, email: str, password: str) -> LoginCheck:
        if self.store is None and not self.seeds:
            raise ConfigError("No login source configured: set DATABASE_URL or APP_USERS_JSON / AUTH_LOGIN_*.")

        normalized = normalize_email(email)
        if not normalized or not password:
            return LoginCheck(failure=LoginFailure.UNKNOWN_USER)

        db_check = self._check_database(normalized, password)
        if db_check is not None and db_check.ok:
            return db_check

        seed_check = self._check_seeds(normalized, password)
        if seed_check.ok or db_check is None:
            return seed_check
        return db_check

    def validate_credentials(self, email: str, password: str) -> Optional[SessionClaims]:
        check = self.check_credentials(email, password)
        if not check.ok:
            logger.info("Login rejected (%s)", check.failure.value)
        return check.claims
