import json

import httpx

from pcu.config import AuthSettings
from pcu.mailer import RESEND_EMAILS_URL, send_password_reset_email

from conftest import SECRET


def _settings(**extra):
    return AuthSettings.from_env({"AUTH_SECRET": SECRET, **extra})


def test_posts_reset_link_to_resend():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "email-1"})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    ok = send_password_reset_email(
        _settings(RESEND_API_KEY="re_test", PASSWORD_RESET_FROM_EMAIL="no-reply@example.com"),
        to_email="coach@example.com",
        reset_url="https://portal.example.com/reset-password?token=a&b",
        client=client,
    )
    assert ok
    (req,) = seen
    assert str(req.url) == RESEND_EMAILS_URL
    assert req.headers["authorization"] == "Bearer re_test"
    body = json.loads(req.content)
    assert body["to"] == ["coach@example.com"]
    assert body["from"] == "no-reply@example.com"
    assert "token=a&b" in body["text"]
    assert "token=a&amp;b" in body["html"]


def test_provider_error_is_reported_not_raised():
    client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(422, text="bad sender")))
    assert not send_password_reset_email(
        _settings(RESEND_API_KEY="re_test"), to_email="a@example.com", reset_url="https://x", client=client
    )


def test_network_error_is_reported_not_raised():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    assert not send_password_reset_email(
        _settings(RESEND_API_KEY="re_test"), to_email="a@example.com", reset_url="https://x", client=client
    )


def test_missing_api_key():
    assert not send_password_reset_email(_settings(), to_email="a@example.com", reset_url="https://x")
