# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Stateless signed session tokens.

Wire format (shared with browsers through cookies)::

    base64url(JSON(claims)) + "." + base64url(HMAC-SHA256(secret, base64url(JSON(claims))))

Both segments are unpadded base64url and the JSON is compact.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from itsdangerous import BadData, Signer
from itsdangerous.encoding import base64_decode, base64_encode

from pcu.config import MIN_SECRET_LENGTH, AppLink, ConfigError, parse_apps

SESSION_TTL_SECONDS = 60 * 60 * 24 * 15  # 15 days


@dataclass(frozen=True)
class SessionClaims:
    email: str
    apps: Tuple[AppLink, ...]
    name: Optional[str] = None
    exp: int = 0

    @property
    def app_url(self) -> str:
        return self.apps[0].url

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"email": self.email, "appUrl": self.app_url}
        if self.name:
            payload["name"] = self.name
        payload["apps"] = [app.as_dict() for app in self.apps]
        payload["exp"] = self.exp
        return payload


class TokenFailure(str, Enum):
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    BAD_PAYLOAD = "bad_payload"
    MISSING_FIELDS = "missing_fields"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TokenCheck:
    claims: Optional[SessionClaims] = None
    failure: Optional[TokenFailure] = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


def _claims_from_payload(payload: Dict[str, Any]) -> Optional[SessionClaims]:
    email = str(payload.get("email") or "").strip()
    if not email:
        return None
    # Tokens minted before multi-app support only carry appUrl.
    apps = parse_apps(payload.get("apps"), payload.get("appUrl"))
    if not apps:
        return None
    name = payload.get("name")
    name = str(name) if name else None
    return SessionClaims(email=email, apps=apps, name=name, exp=int(payload["exp"]))


class SessionCodec:
    """Mint and verify session tokens with a process-wide secret."""

    def __init__(self, secret: str, *, clock: Callable[[], float] = time.time) -> None:
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ConfigError(f"AUTH_SECRET must be set and at least {MIN_SECRET_LENGTH} characters.")
        self._signer = Signer(secret, key_derivation="none", digest_method=hashlib.sha256)
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def _sign(self, encoded_payload: bytes) -> bytes:
        return self._signer.get_signature(encoded_payload)

    def mint(self, claims: SessionClaims, ttl_seconds: int = SESSION_TTL_SECONDS) -> str:
        complete = replace(claims, exp=self._now() + int(ttl_seconds))
        raw = json.dumps(complete.to_payload(), separators=(",", ":"), ensure_ascii=False)
        encoded = base64_encode(raw.encode("utf-8"))
        return (encoded + b"." + self._sign(encoded)).decode("ascii")

    def decode(self, token: Optional[str]) -> TokenCheck:
        encoded, _, provided = (token or "").partition(".")
        if not encoded or not provided:
            return TokenCheck(failure=TokenFailure.MALFORMED)

        try:
            encoded_bytes = encoded.encode("ascii")
            provided_bytes = provided.encode("ascii")
        except UnicodeEncodeError:
            return TokenCheck(failure=TokenFailure.MALFORMED)

        expected = self._sign(encoded_bytes)
        if len(expected) != len(provided_bytes):
            return TokenCheck(failure=TokenFailure.BAD_SIGNATURE)
        if not hmac.compare_digest(expected, provided_bytes):
            return TokenCheck(failure=TokenFailure.BAD_SIGNATURE)

        try:
            payload = json.loads(base64_decode(encoded_bytes).decode("utf-8"))
        except (BadData, UnicodeDecodeError, ValueError):
            return TokenCheck(failure=TokenFailure.BAD_PAYLOAD)
        if not isinstance(payload, dict):
            return TokenCheck(failure=TokenFailure.BAD_PAYLOAD)

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)) or not exp:
            return TokenCheck(failure=TokenFailure.MISSING_FIELDS)
        claims = _claims_from_payload(payload)
        if claims is None:
            return TokenCheck(failure=TokenFailure.MISSING_FIELDS)
        if claims.exp <= self._now():
            return TokenCheck(failure=TokenFailure.EXPIRED)
        return TokenCheck(claims=claims)

    def verify(self, token: Optional[str]) -> Optional[SessionClaims]:
        return self.decode(token).claims
