import sys
from pathlib import Path as _Path
sys.path.insert(0, str(_Path(__file__).resolve().parents[1] / "src"))

import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from pcu.auth.db import AuthStore
from pcu.config import AuthSettings, parse_user_seeds

SECRET = "test-secret-for-session-tokens-0123"


class FrozenClock:
    """Settable clock shared by the store (datetime) and codec (epoch seconds)."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture()
def store(db_url, clock):
    s = AuthStore.from_url(db_url, clock=clock)
    yield s
    s.dispose()


@pytest.fixture()
def seed_env() -> dict:
    """Two static users: one with a single app, one with an app list."""
    users = [
        {"email": "coach@example.com", "password": "coach-pw-1", "appUrl": "https://apps.example.com/coach", "name": "Coach"},
        {
            "email": "Staff@Example.com",
            "password": "staff-pw-1",
            "apps": [
                {"name": "Pitching", "url": "https://apps.example.com/pitching"},
                {"label": "Hitting", "url": "https://apps.example.com/hitting"},
            ],
        },
    ]
    return {"AUTH_SECRET": SECRET, "APP_USERS_JSON": json.dumps(users)}


@pytest.fixture()
def seeds(seed_env):
    return parse_user_seeds(seed_env)


@pytest.fixture()
def settings(seed_env, db_url) -> AuthSettings:
    return AuthSettings.from_env({**seed_env, "DATABASE_URL": db_url, "PCU_ENV": "development"})


def b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def legacy_token(payload: dict, secret: str = SECRET) -> str:
    """Build a token by hand, the way older deployments minted them."""
    encoded = b64url(json.dumps(payload).encode("utf-8"))
    sig = b64url(hmac.new(secret.encode(), encoded.encode(), hashlib.sha256).digest())
    return f"{encoded}.{sig}"
