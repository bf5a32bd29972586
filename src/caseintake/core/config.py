# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Runtime settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///intake.db"
    user_table: str = "user_account"
    id_column: str = "user_id"
    login_column: str = "email"
    legacy_password_column: str = "password"
    schema_profile: str = ""
    allow_plaintext_upgrade: bool = False
    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("INTAKE_DATABASE_URL") or os.getenv("DATABASE_URL") or "sqlite:///intake.db",
        user_table=os.getenv("INTAKE_USER_TABLE", "user_account"),
        id_column=os.getenv("INTAKE_USER_ID_COLUMN", "user_id"),
        login_column=os.getenv("INTAKE_LOGIN_COLUMN", "email"),
        legacy_password_column=os.getenv("INTAKE_LEGACY_PASSWORD_COLUMN", "password"),
        schema_profile=os.getenv("INTAKE_SCHEMA_PROFILE", "").strip().lower(),
        allow_plaintext_upgrade=_flag("INTAKE_ALLOW_PLAINTEXT_UPGRADE"),
        log_level=os.getenv("INTAKE_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
