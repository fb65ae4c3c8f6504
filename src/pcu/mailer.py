# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Password-reset email delivery through the Resend HTTP API."""

from __future__ import annotations

import html
import logging
from typing import Optional

import httpx

from pcu.config import AuthSettings

logger = logging.getLogger(__name__)

RESEND_EMAILS_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT_SECONDS = 10.0


def send_password_reset_email(
    settings: AuthSettings,
    *,
    to_email: str,
    reset_url: str,
    client: Optional[httpx.Client] = None,
) -> bool:
    """Send the reset link. Returns False (and logs) on any delivery problem."""
    if not settings.resend_api_key:
        logger.error("RESEND_API_KEY is not configured; reset email for %s not sent", to_email)
        return False

    safe_url = html.escape(reset_url, quote=True)
    body = {
        "from": settings.reset_from_email,
        "to": [to_email],
        "subject": "Reset your PCU Dashboard password",
        "text": f"Use this link to reset your password: {reset_url}",
        "html": (
            "<p>Use this link to reset your PCU Dashboard password:</p>"
            f'<p><a href="{safe_url}">{safe_url}</a></p>'
        ),
    }
    headers = {"Authorization": f"Bearer {settings.resend_api_key}"}

    owns_client = client is None
    http = client or httpx.Client(timeout=REQUEST_TIMEOUT_SECONDS)
    try:
        resp = http.post(RESEND_EMAILS_URL, json=body, headers=headers)
    except httpx.HTTPError:
        logger.exception("Reset email request failed")
        return False
    finally:
        if owns_client:
            http.close()

    if resp.is_error:
        logger.error("Reset email provider error (%s): %s", resp.status_code, resp.text)
        return False
    return True
