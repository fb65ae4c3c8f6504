# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Relational store for portal users and password-reset tokens.

SQLAlchemy Core only: the tables below are query-builder handles, not ORM
classes. One ``AuthStore`` (and therefore one connection pool) is created per
process and handed to the services that need it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    func,
    inspect,
    insert,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.engine import Connection, Engine

from pcu.auth.passwords import hash_password
from pcu.config import UserSeed, normalize_email

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


metadata = MetaData()

auth_users = Table(
    "auth_users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", Text, nullable=False, unique=True),
    Column("name", Text),
    Column("password_hash", Text, nullable=False),
    Column("app_url", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

password_reset_tokens = Table(
    "password_reset_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_email", Text, nullable=False),
    Column("token_hash", Text, nullable=False, unique=True),
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("used_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
)

reset_tokens_email_index = Index("idx_password_reset_tokens_user_email", password_reset_tokens.c.user_email)

# Columns older deployments may lack. Added nullable, then back-filled.
_MIGRATED_USER_COLUMNS = ("name", "password_hash", "app_url", "created_at", "updated_at")
_BACKFILL_TIMESTAMPS = ("created_at", "updated_at")


@dataclass(frozen=True)
class UserRow:
    email: str
    name: Optional[str]
    password_hash: str
    app_url: Optional[str]


def _row_to_user(row) -> UserRow:
    return UserRow(
        email=row.email,
        name=row.name,
        password_hash=row.password_hash or "",
        app_url=row.app_url,
    )


class AuthStore:
    """Owns the engine (connection pool) and the schema of the auth tables."""

    def __init__(self, engine: Engine, *, clock: Clock = utcnow) -> None:
        self.engine = engine
        self.clock = clock
        self._ready = False

    @classmethod
    def from_url(cls, url: str, *, clock: Clock = utcnow, **engine_kwargs) -> "AuthStore":
        engine_kwargs.setdefault("pool_pre_ping", True)
        return cls(create_engine(url, **engine_kwargs), clock=clock)

    def dispose(self) -> None:
        self.engine.dispose()

    # ------------------ Schema ------------------

    def ensure_schema_ready(self, seeds: Iterable[UserSeed] = (), *, force: bool = False) -> None:
        """Create/migrate the auth tables and sync seed users. Idempotent."""
        if self._ready and not force:
            return

        with self.engine.begin() as conn:
            auth_users.create(conn, checkfirst=True)
            self._add_missing_user_columns(conn)
            self._repair_legacy_reset_table(conn)
            password_reset_tokens.create(conn, checkfirst=True)
            reset_tokens_email_index.create(conn, checkfirst=True)

        with self.engine.begin() as conn:
            for seed in seeds:
                self._sync_seed(conn, seed)

        self._ready = True

    def _add_missing_user_columns(self, conn: Connection) -> None:
        existing = {c["name"] for c in inspect(conn).get_columns(auth_users.name)}
        now = self.clock()
        for column in _MIGRATED_USER_COLUMNS:
            if column in existing:
                continue
            ddl = auth_users.c[column].type.compile(dialect=conn.dialect)
            logger.info("Adding missing column auth_users.%s", column)
            conn.execute(text(f"ALTER TABLE auth_users ADD COLUMN {column} {ddl}"))
            if column in _BACKFILL_TIMESTAMPS:
                conn.execute(
                    update(auth_users).where(auth_users.c[column].is_(None)).values({column: now})
                )

    def _repair_legacy_reset_table(self, conn: Connection) -> None:
        insp = inspect(conn)
        if not insp.has_table(password_reset_tokens.name):
            return
        columns = {c["name"] for c in insp.get_columns(password_reset_tokens.name)}
        foreign_keys = insp.get_foreign_keys(password_reset_tokens.name)
        if "user_id" in columns or "user_email" not in columns or foreign_keys:
            # Drops outstanding reset tokens; user rows are never touched.
            logger.warning("Recreating legacy password_reset_tokens table")
            password_reset_tokens.drop(conn, checkfirst=True)

    def _sync_seed(self, conn: Connection, seed: UserSeed) -> None:
        email = normalize_email(seed.email)
        existing = conn.execute(
            select(auth_users.c.name, auth_users.c.app_url).where(auth_users.c.email == email).limit(1)
        ).first()
        now = self.clock()

        if existing is None:
            conn.execute(
                insert(auth_users).values(
                    email=email,
                    name=seed.name,
                    password_hash=hash_password(seed.password),
                    app_url=seed.primary_app_url,
                    created_at=now,
                    updated_at=now,
                )
            )
            logger.info("Seeded auth user %s", email)
            return

        # Seed data only fills gaps; rows with real values are left alone.
        updates: Dict[str, object] = {}
        if not (existing.app_url or "").strip():
            updates["app_url"] = seed.primary_app_url
        if not (existing.name or "").strip() and seed.name:
            updates["name"] = seed.name
        if updates:
            updates["updated_at"] = now
            conn.execute(update(auth_users).where(auth_users.c.email == email).values(**updates))

    # ------------------ Users ------------------

    def get_user(self, email: str) -> Optional[UserRow]:
        wanted = normalize_email(email)
        if not wanted:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(
                select(
                    auth_users.c.email,
                    auth_users.c.name,
                    auth_users.c.password_hash,
                    auth_users.c.app_url,
                )
                .where(auth_users.c.email == wanted)
                .limit(1)
            ).first()
        return _row_to_user(row) if row is not None else None

    def set_password_hash(self, email: str, password_hash: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(auth_users)
                .where(auth_users.c.email == normalize_email(email))
                .values(password_hash=password_hash, updated_at=self.clock())
            )

    def upsert_user(self, *, email: str, password: str, app_url: str, name: Optional[str] = None) -> None:
        """Provision a user directly, replacing password and app url if the row exists."""
        wanted = normalize_email(email)
        if not wanted or not app_url.strip():
            raise ValueError("email and app_url are required")
        now = self.clock()
        values = {
            "name": name,
            "password_hash": hash_password(password),
            "app_url": app_url.strip(),
            "updated_at": now,
        }
        with self.engine.begin() as conn:
            result = conn.execute(update(auth_users).where(auth_users.c.email == wanted).values(**values))
            if result.rowcount == 0:
                conn.execute(insert(auth_users).values(email=wanted, created_at=now, **values))

    # ------------------ Reset tokens ------------------

    def insert_reset_token(self, *, email: str, token_hash: str, expires_at: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(password_reset_tokens).values(
                    user_email=email,
                    token_hash=token_hash,
                    expires_at=expires_at,
                    created_at=self.clock(),
                )
            )

    def purge_reset_tokens(self, before: Optional[datetime] = None) -> int:
        """Delete tokens that expired before ``before`` or were already used."""
        cutoff = before or self.clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(password_reset_tokens).where(
                    or_(
                        password_reset_tokens.c.expires_at <= cutoff,
                        password_reset_tokens.c.used_at.is_not(None),
                    )
                )
            )
        return result.rowcount or 0

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(auth_users)).scalar_one()
