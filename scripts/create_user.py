#!/usr/bin/env python3
from __future__ import annotations

from getpass import getpass

from pcu.auth.db import AuthStore
from pcu.config import AuthSettings


def main() -> None:
    settings = AuthSettings.from_env()
    if not settings.database_url:
        raise SystemExit("DATABASE_URL is not set")

    store = AuthStore.from_url(settings.database_url)
    store.ensure_schema_ready(settings.seeds.users)

    email = input("Email: ").strip()
    name = input("Display name (optional): ").strip() or None
    app_url = input("Dashboard URL: ").strip()

    pw1 = getpass("Password: ")
    pw2 = getpass("Repeat password: ")
    if pw1 != pw2:
        raise SystemExit("Passwords do not match")

    store.upsert_user(email=email, password=pw1, app_url=app_url, name=name)
    store.dispose()
    print(f"OK -> {email.lower()}")


if __name__ == "__main__":
    main()
