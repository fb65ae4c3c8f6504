import json

import pytest

from pcu.config import AuthSettings, ConfigError, SeedKind, parse_apps, parse_user_seeds


def test_json_list_is_normalised(seeds):
    assert seeds.kind is SeedKind.JSON_LIST
    assert [u.email for u in seeds.users] == ["coach@example.com", "staff@example.com"]
    staff = seeds.find("  STAFF@example.com ")
    assert [a.name for a in staff.apps] == ["Pitching", "Hitting"]
    assert staff.primary_app_url == "https://apps.example.com/pitching"


def test_json_entries_without_app_or_password_are_skipped():
    raw = [
        {"email": "a@example.com", "password": "pw"},
        {"email": "b@example.com", "appUrl": "https://x"},
        {"email": "c@example.com", "password": "pw", "apps": [{"name": "Empty", "url": " "}], "appUrl": "https://c"},
        "not-a-user",
    ]
    source = parse_user_seeds({"APP_USERS_JSON": json.dumps(raw)})
    assert [u.email for u in source.users] == ["c@example.com"]
    assert source.users[0].apps[0].url == "https://c"


def test_invalid_json_yields_no_users():
    source = parse_user_seeds({"APP_USERS_JSON": "{not json"})
    assert source.kind is SeedKind.JSON_LIST
    assert not source


def test_single_user_variables():
    source = parse_user_seeds(
        {
            "AUTH_LOGIN_EMAIL": "Solo@Example.com",
            "AUTH_LOGIN_PASSWORD": "pw",
            "AUTH_APP_URL": "https://solo",
            "AUTH_LOGIN_NAME": "Solo",
        }
    )
    assert source.kind is SeedKind.SINGLE
    (user,) = source.users
    assert user.email == "solo@example.com"
    assert user.name == "Solo"
    assert [a.as_dict() for a in user.apps] == [{"name": "Dashboard", "url": "https://solo"}]


def test_nothing_configured():
    assert parse_user_seeds({}).kind is SeedKind.EMPTY


def test_unnamed_apps_get_numbered_names():
    apps = parse_apps([{"url": "https://one"}, {"url": "https://two"}])
    assert [a.name for a in apps] == ["Dashboard 1", "Dashboard 2"]


def test_settings_from_env():
    settings = AuthSettings.from_env(
        {
            "AUTH_SECRET": "x" * 16,
            "DATABASE_URL": "postgres://u:p@db/pcu",
            "AUTH_COOKIE_DOMAIN": "example.org",
            "PCU_ENV": "Development",
        }
    )
    assert settings.database_url == "postgresql://u:p@db/pcu"
    assert settings.cookie_domain == "example.org"
    assert settings.is_development
    assert settings.validate() is settings


def test_settings_fall_back_to_legacy_env_names():
    settings = AuthSettings.from_env(
        {
            "AUTH_SECRET": "x" * 16,
            "DEMO_REQUEST_FROM_EMAIL": "demo@example.com",
            "NEXT_PUBLIC_APP_URL": "https://portal.example.com/",
        }
    )
    assert settings.reset_from_email == "demo@example.com"
    assert settings.public_app_url == "https://portal.example.com"

    preferred = AuthSettings.from_env(
        {
            "AUTH_SECRET": "x" * 16,
            "PASSWORD_RESET_FROM_EMAIL": "reset@example.com",
            "DEMO_REQUEST_FROM_EMAIL": "demo@example.com",
            "PUBLIC_APP_URL": "https://new.example.com",
            "NEXT_PUBLIC_APP_URL": "https://old.example.com",
        }
    )
    assert preferred.reset_from_email == "reset@example.com"
    assert preferred.public_app_url == "https://new.example.com"


@pytest.mark.parametrize("secret", ["", "too-short"])
def test_short_secret_fails_validation(secret):
    with pytest.raises(ConfigError):
        AuthSettings.from_env({"AUTH_SECRET": secret}).validate()
