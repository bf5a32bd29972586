#!/usr/bin/env python3
from __future__ import annotations

from getpass import getpass

import sqlalchemy as sa

from caseintake.auth.users import AccountService
from caseintake.core.config import configure_logging, load_settings
from caseintake.core.schema import resolve_profile
from caseintake.infra.user_repo import UserRepository


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    engine = sa.create_engine(settings.database_url)
    repo = UserRepository.from_settings(engine, settings)
    profile = resolve_profile(settings.schema_profile, repo.probe_profile)
    accounts = AccountService(repo, profile)

    fields = {}
    for name in accounts.required_fields():
        fields[name] = input(f"{name.replace('_', ' ').capitalize()}: ").strip()

    pw1 = getpass("Password: ")
    pw2 = getpass("Repeat password: ")

    result = accounts.register_credential(fields, pw1, pw2)
    if not result.ok:
        raise SystemExit(result.message)
    print(f"OK -> {settings.user_table} ({profile.name} schema)")


if __name__ == "__main__":
    main()
