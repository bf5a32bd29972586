import os
import sys
from pathlib import Path as _Path
sys.path.insert(0, str(_Path(__file__).resolve().parents[1] / "src"))

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only")

from typing import Any, Dict, Iterable, Optional

import pytest
import sqlalchemy as sa
from sqlalchemy.pool import StaticPool

from caseintake.auth.passwords import PasswordRecord
from caseintake.core.config import Settings

FULL_COLUMNS = ("email", "password", "password_hash", "password_salt", "first_name", "last_name", "phone")
LEGACY_COLUMNS = ("email", "password")
HARDENED_COLUMNS = ("email", "password_hash", "password_salt", "first_name", "last_name", "phone")

PRACTICE_AREA_NAMES = [
    "Slip/Trip Fall",
    "Negligence Security",
    "Car Crashes",
    "Professional Negligence",
    "Workers Compensation",
    "Products Liability",
    "Wrongful Death",
    "Motorcycle Crash",
    "Other",
]


def memory_engine() -> sa.engine.Engine:
    return sa.create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


def create_user_table(engine, columns: Iterable[str], table: str = "user_account") -> None:
    cols = ", ".join(f"{c} TEXT" for c in columns)
    with engine.begin() as conn:
        conn.execute(sa.text(f"CREATE TABLE {table} (user_id INTEGER PRIMARY KEY AUTOINCREMENT, {cols})"))


def create_case_tables(engine) -> None:
    with engine.begin() as conn:
        conn.execute(
            sa.text(
                "CREATE TABLE client (client_id INTEGER PRIMARY KEY AUTOINCREMENT, user_id INTEGER, "
                "first_name TEXT, last_name TEXT, email TEXT, phone TEXT, "
                "preferred_contact_method TEXT, created_on TIMESTAMP)"
            )
        )
        conn.execute(
            sa.text(
                "CREATE TABLE case_info (case_id INTEGER PRIMARY KEY AUTOINCREMENT, title TEXT, "
                "description TEXT, opened_on TIMESTAMP, closed_on TIMESTAMP, priority TEXT, "
                "reference_no INTEGER, is_public_submission INTEGER, status_id INTEGER, "
                "practice_area_id INTEGER, client_id INTEGER)"
            )
        )
        conn.execute(sa.text("CREATE TABLE practice_area (practice_area_id INTEGER PRIMARY KEY, name TEXT)"))
        for i, name in enumerate(PRACTICE_AREA_NAMES, start=1):
            conn.execute(sa.text("INSERT INTO practice_area VALUES (:i, :n)"), {"i": i, "n": name})


def insert_user(engine, table: str = "user_account", **values: Any) -> int:
    cols = ", ".join(values)
    params = ", ".join(f":{k}" for k in values)
    with engine.begin() as conn:
        res = conn.execute(sa.text(f"INSERT INTO {table} ({cols}) VALUES ({params})"), values)
        return res.lastrowid


def fetch_user(engine, user_id: int, table: str = "user_account") -> Optional[Dict[str, Any]]:
    with engine.connect() as conn:
        row = conn.execute(sa.text(f"SELECT * FROM {table} WHERE user_id = :u"), {"u": user_id}).first()
    return dict(row._mapping) if row is not None else None


def split_values(record: PasswordRecord) -> Dict[str, str]:
    return {"password_hash": record.hash, "password_salt": record.salt}


@pytest.fixture()
def fast_kdf(monkeypatch):
    # Same algorithm, fewer rounds: keeps the suite quick.
    monkeypatch.setattr("caseintake.auth.passwords.PASSWORD_ITERATIONS", 1000)


@pytest.fixture()
def engine():
    eng = memory_engine()
    yield eng
    eng.dispose()


@pytest.fixture()
def full_engine(engine):
    create_user_table(engine, FULL_COLUMNS)
    return engine


@pytest.fixture()
def legacy_engine(engine):
    create_user_table(engine, LEGACY_COLUMNS)
    return engine


@pytest.fixture()
def hardened_engine(engine):
    create_user_table(engine, HARDENED_COLUMNS)
    return engine


@pytest.fixture()
def settings() -> Settings:
    return Settings(database_url="sqlite://", log_level="WARNING")
