# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import hashlib
import hmac
import secrets

ALGORITHM = "scrypt"
SALT_BYTES = 16
KEY_LENGTH = 64
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1


def _derive(password: str, salt_hex: str) -> bytes:
    # The hex text itself is the salt, matching hashes already stored in production.
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt_hex.encode("utf-8"),
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=KEY_LENGTH,
    )


def hash_password(plain: str) -> str:
    if not plain:
        raise ValueError("Empty password")
    salt_hex = secrets.token_hex(SALT_BYTES)
    return f"{ALGORITHM}${salt_hex}${_derive(plain, salt_hex).hex()}"


def verify_password(hash_value: str, plain: str) -> bool:
    if not hash_value or plain is None:
        return False

    # Legacy rows store the password itself.
    if "$" not in hash_value:
        return hmac.compare_digest(hash_value.encode("utf-8"), plain.encode("utf-8"))

    parts = hash_value.split("$")
    if len(parts) != 3:
        return False
    algorithm, salt_hex, stored_hex = parts
    if algorithm != ALGORITHM or not salt_hex or not stored_hex:
        return False
    try:
        stored = bytes.fromhex(stored_hex)
    except ValueError:
        return False

    candidate = _derive(plain, salt_hex)
    if len(candidate) != len(stored):
        return False
    return hmac.compare_digest(candidate, stored)


def needs_rehash(hash_value: str) -> bool:
    return bool(hash_value) and "$" not in hash_value
