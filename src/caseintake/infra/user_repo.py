# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from caseintake.core.config import Settings
from caseintake.core.schema import SchemaProfile, TRACKED_COLUMNS, capability_map, legacy_profile

log = logging.getLogger(__name__)


class UserRepository:
    """Row-level access to the user table.

    The table shape varies between deployments, so statements are built from
    lightweight ``sa.table`` clauses naming only the columns each call needs.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        table_name: str = "user_account",
        id_column: str = "user_id",
        login_column: str = "email",
        legacy_password_column: str = "password",
    ) -> None:
        self.engine = engine
        self.table_name = table_name
        self.id_column = id_column
        self.login_column = login_column
        self.legacy_password_column = legacy_password_column

    @classmethod
    def from_settings(cls, engine: Engine, settings: Settings) -> "UserRepository":
        return cls(
            engine,
            table_name=settings.user_table,
            id_column=settings.id_column,
            login_column=settings.login_column,
            legacy_password_column=settings.legacy_password_column,
        )

    def _table(self, columns: Iterable[str]) -> sa.TableClause:
        return sa.table(self.table_name, *(sa.column(c) for c in dict.fromkeys(columns)))

    # --- schema ---

    def probe_profile(self) -> SchemaProfile:
        """Reflect the user table once and build the matching profile.

        Any database error degrades to the legacy profile.
        """
        try:
            names = {c["name"] for c in sa.inspect(self.engine).get_columns(self.table_name)}
        except SQLAlchemyError as exc:
            log.warning("User schema detection failed for '%s': %s", self.table_name, exc)
            return legacy_profile()
        if not names:
            log.warning("User table '%s' not found; assuming legacy schema", self.table_name)
            return legacy_profile()
        present = [col for col in TRACKED_COLUMNS if col in names]
        return SchemaProfile(
            name="detected",
            capabilities=capability_map(present),
            legacy_password=self.legacy_password_column in names,
        )

    # --- reads ---

    def fetch_by_login(self, login: str, columns: Iterable[str]) -> Optional[Dict[str, Any]]:
        cols = list(columns)
        t = self._table(cols + [self.login_column])
        stmt = sa.select(*(t.c[c] for c in cols)).where(t.c[self.login_column] == login).limit(1)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).first()
        return dict(row._mapping) if row is not None else None

    def exists(self, login: str) -> bool:
        return self.fetch_by_login(login, [self.id_column]) is not None

    def list_users(self, columns: Iterable[str]) -> List[Dict[str, Any]]:
        cols = list(columns)
        t = self._table(cols + [self.id_column])
        stmt = sa.select(*(t.c[c] for c in cols)).order_by(t.c[self.id_column])
        with self.engine.connect() as conn:
            return [dict(r._mapping) for r in conn.execute(stmt)]

    # --- writes ---

    def update(self, user_id: Any, values: Dict[str, Any]) -> None:
        if not values:
            return
        t = self._table(list(values) + [self.id_column])
        stmt = sa.update(t).where(t.c[self.id_column] == user_id).values(**values)
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def insert(self, values: Dict[str, Any]) -> None:
        t = self._table(values)
        with self.engine.begin() as conn:
            conn.execute(sa.insert(t).values(**values))

    def delete(self, user_id: Any) -> int:
        t = self._table([self.id_column])
        with self.engine.begin() as conn:
            return conn.execute(sa.delete(t).where(t.c[self.id_column] == user_id)).rowcount
