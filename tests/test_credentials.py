import pytest
from sqlalchemy import select

from pcu.auth.db import auth_users
from pcu.auth.passwords import hash_password
from pcu.auth.users import CredentialStore, LoginFailure
from pcu.config import ConfigError, SeedKind, UserSeedSource, parse_user_seeds


@pytest.fixture()
def credentials(seeds, store):
    return CredentialStore(seeds, store)


def test_database_user_with_messy_email(store):
    store.ensure_schema_ready()
    store.upsert_user(email="user@example.com", password="correct-pw", app_url="https://apps/user", name="User")
    creds = CredentialStore(UserSeedSource(kind=SeedKind.EMPTY), store)

    claims = creds.validate_credentials("User@Example.com ", "correct-pw")
    assert claims is not None
    assert claims.email == "user@example.com"
    assert claims.name == "User"
    assert [a.as_dict() for a in claims.apps] == [{"name": "Dashboard", "url": "https://apps/user"}]


def test_failures_share_one_public_answer(credentials):
    assert credentials.validate_credentials("nobody@example.com", "x") is None
    assert credentials.validate_credentials("coach@example.com", "wrong") is None
    assert credentials.check_credentials("nobody@example.com", "x").failure is LoginFailure.UNKNOWN_USER
    assert credentials.check_credentials("coach@example.com", "wrong").failure is LoginFailure.BAD_PASSWORD


def test_seed_app_list_overrides_app_url_column(credentials):
    claims = credentials.validate_credentials("staff@example.com", "staff-pw-1")
    assert [a.name for a in claims.apps] == ["Pitching", "Hitting"]
    assert claims.app_url == "https://apps.example.com/pitching"


def test_database_password_wins_after_change(credentials, store):
    credentials.validate_credentials("coach@example.com", "coach-pw-1")  # seeds the table
    store.set_password_hash("coach@example.com", hash_password("rotated-pw"))

    assert credentials.validate_credentials("coach@example.com", "rotated-pw") is not None
    # Static config still accepts its own password when the database rejects it.
    assert credentials.validate_credentials("coach@example.com", "coach-pw-1") is not None


def test_user_without_app_is_rejected(store):
    store.ensure_schema_ready()
    store.upsert_user(email="noapp@example.com", password="pw-123456", app_url="https://tmp")
    with store.engine.begin() as conn:
        conn.execute(auth_users.update().where(auth_users.c.email == "noapp@example.com").values(app_url="  "))

    creds = CredentialStore(UserSeedSource(kind=SeedKind.EMPTY), store)
    assert creds.validate_credentials("noapp@example.com", "pw-123456") is None
    assert creds.check_credentials("noapp@example.com", "pw-123456").failure is LoginFailure.NO_APPS


def test_legacy_plaintext_row_is_upgraded_on_login(store):
    store.ensure_schema_ready()
    store.upsert_user(email="old@example.com", password="ignored", app_url="https://old")
    with store.engine.begin() as conn:
        conn.execute(
            auth_users.update().where(auth_users.c.email == "old@example.com").values(password_hash="legacy-pw")
        )

    creds = CredentialStore(UserSeedSource(kind=SeedKind.EMPTY), store)
    assert creds.validate_credentials("old@example.com", "legacy-pw") is not None
    with store.engine.connect() as conn:
        stored = conn.execute(select(auth_users.c.password_hash).where(auth_users.c.email == "old@example.com")).scalar_one()
    assert stored.startswith("scrypt$")
    assert creds.validate_credentials("old@example.com", "legacy-pw") is not None


def test_static_users_without_database(seeds):
    creds = CredentialStore(seeds)
    claims = creds.validate_credentials(" COACH@example.com", "coach-pw-1")
    assert claims.email == "coach@example.com"
    assert claims.name == "Coach"
    assert creds.validate_credentials("coach@example.com", "nope") is None


def test_static_password_with_dollar_signs():
    raw = '[{"email": "a@example.com", "password": "pa$$word-123", "appUrl": "https://x"}]'
    creds = CredentialStore(parse_user_seeds({"APP_USERS_JSON": raw}))
    check = creds.check_credentials("a@example.com", "pa$$word-123")
    assert check.ok, check.failure
    assert creds.check_credentials("a@example.com", "pa$$word-12").failure is LoginFailure.BAD_PASSWORD


def test_unreachable_database_falls_back_to_static_users(seeds, tmp_path):
    from pcu.auth.db import AuthStore

    broken = AuthStore.from_url(f"sqlite:///{tmp_path / 'missing-dir' / 'auth.db'}")
    creds = CredentialStore(seeds, broken)
    assert creds.validate_credentials("coach@example.com", "coach-pw-1") is not None


def test_no_login_source_is_a_config_error():
    creds = CredentialStore(parse_user_seeds({}))
    with pytest.raises(ConfigError):
        creds.validate_credentials("a@example.com", "pw")
