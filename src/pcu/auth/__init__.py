# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Authentication core for the portal.

This package provides:
- Password hashing/verification (scrypt, legacy plaintext rows)
- Signed session tokens (HMAC-SHA256 through itsdangerous)
- Credential validation against the database and static users
- One-time password-reset tokens
- Session lookup across current, shared and retired cookie names
"""
