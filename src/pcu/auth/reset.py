# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""One-time password-reset tokens.

Only the SHA-256 of a token is stored; the raw value is handed out once by
``issue`` and never again.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import select, update

from pcu.auth.db import AuthStore, auth_users, password_reset_tokens
from pcu.auth.passwords import hash_password
from pcu.config import UserSeed, normalize_email

logger = logging.getLogger(__name__)

RESET_TOKEN_TTL = timedelta(hours=1)
RESET_TOKEN_BYTES = 32


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IssuedResetToken:
    token: str
    email: str


class ResetFailure(str, Enum):
    NOT_FOUND = "not_found"  # unknown, expired or already used
    RACE_LOST = "race_lost"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class RedeemCheck:
    email: Optional[str] = None
    failure: Optional[ResetFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class ResetTokenService:
    def __init__(
        self,
        store: AuthStore,
        *,
        seeds: Iterable[UserSeed] = (),
        ttl: timedelta = RESET_TOKEN_TTL,
    ) -> None:
        self.store = store
        self.seeds = tuple(seeds)
        self.ttl = ttl

    def issue(self, email: str) -> Optional[IssuedResetToken]:
        """Create a reset token for an existing user, or None for anyone else.

        Callers must answer the same way in both cases.
        """
        self.store.ensure_schema_ready(self.seeds)
        user = self.store.get_user(normalize_email(email))
        if user is None:
            return None

        token = secrets.token_urlsafe(RESET_TOKEN_BYTES)
        self.store.insert_reset_token(
            email=user.email,
            token_hash=hash_reset_token(token),
            expires_at=self.store.clock() + self.ttl,
        )
        logger.info("Issued password reset token for %s", user.email)
        return IssuedResetToken(token=token, email=user.email)

    def check_redeem(self, token: str, new_password: str) -> RedeemCheck:
        if not token or not new_password:
            return RedeemCheck(failure=ResetFailure.NOT_FOUND)

        token_hash = hash_reset_token(token)
        try:
            self.store.ensure_schema_ready(self.seeds)
            new_hash = hash_password(new_password)
            with self.store.engine.connect() as conn:
                with conn.begin() as tx:
                    now = self.store.clock()
                    row = conn.execute(
                        select(password_reset_tokens.c.id, password_reset_tokens.c.user_email)
                        .where(
                            password_reset_tokens.c.token_hash == token_hash,
                            password_reset_tokens.c.used_at.is_(None),
                            password_reset_tokens.c.expires_at > now,
                        )
                        .limit(1)
                        .with_for_update()
                    ).first()
                    if row is None:
                        tx.rollback()
                        return RedeemCheck(failure=ResetFailure.NOT_FOUND)

                    # Claim this token first; a concurrent redeemer sees zero rows here.
                    claimed = conn.execute(
                        update(password_reset_tokens)
                        .where(
                            password_reset_tokens.c.id == row.id,
                            password_reset_tokens.c.used_at.is_(None),
                        )
                        .values(used_at=now)
                    )
                    if claimed.rowcount != 1:
                        tx.rollback()
                        return RedeemCheck(failure=ResetFailure.RACE_LOST)

                    conn.execute(
                        update(auth_users)
                        .where(auth_users.c.email == row.user_email)
                        .values(password_hash=new_hash, updated_at=now)
                    )
                    # Every other outstanding link for this user dies with it.
                    conn.execute(
                        update(password_reset_tokens)
                        .where(
                            password_reset_tokens.c.user_email == row.user_email,
                            password_reset_tokens.c.used_at.is_(None),
                        )
                        .values(used_at=now)
                    )
        except Exception:
            logger.exception("Password reset failed; transaction rolled back")
            return RedeemCheck(failure=ResetFailure.STORE_ERROR)

        logger.info("Password reset completed for %s", row.user_email)
        return RedeemCheck(email=row.user_email)

    def redeem(self, token: str, new_password: str) -> bool:
        return self.check_redeem(token, new_password).ok

    def purge_expired(self) -> int:
        self.store.ensure_schema_ready(self.seeds)
        removed = self.store.purge_reset_tokens()
        if removed:
            logger.info("Purged %d stale password reset tokens", removed)
        return removed
