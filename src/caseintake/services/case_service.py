# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from caseintake.core.schema import SchemaProfile

log = logging.getLogger(__name__)

PRACTICE_AREAS: Dict[str, int] = {
    "Slip/Trip Fall": 1,
    "Negligence Security": 2,
    "Car Crashes": 3,
    "Professional Negligence": 4,
    "Workers Compensation": 5,
    "Products Liability": 6,
    "Wrongful Death": 7,
    "Motorcycle Crash": 8,
    "Other": 9,
}

CLIENT = sa.table(
    "client",
    sa.column("client_id"),
    sa.column("user_id"),
    sa.column("first_name"),
    sa.column("last_name"),
    sa.column("email"),
    sa.column("phone"),
    sa.column("preferred_contact_method"),
    sa.column("created_on", sa.DateTime),
)

CASE_INFO = sa.table(
    "case_info",
    sa.column("case_id"),
    sa.column("title"),
    sa.column("description"),
    sa.column("opened_on", sa.DateTime),
    sa.column("closed_on", sa.DateTime),
    sa.column("priority"),
    sa.column("reference_no"),
    sa.column("is_public_submission"),
    sa.column("status_id"),
    sa.column("practice_area_id"),
    sa.column("client_id"),
)

PRACTICE_AREA = sa.table("practice_area", sa.column("practice_area_id"), sa.column("name"))


@dataclass(frozen=True)
class CaseSubmission:
    title: str = ""
    description: str = ""
    practice_area: str = ""
    preferred_contact: str = ""

    def cleaned(self) -> "CaseSubmission":
        return CaseSubmission(
            title=(self.title or "").strip(),
            description=(self.description or "").strip(),
            practice_area=self.practice_area or "",
            preferred_contact=self.preferred_contact or "",
        )

    def form_values(self) -> Dict[str, str]:
        return {
            "title": self.title,
            "description": self.description,
            "practice_area": self.practice_area,
            "preferred_contact": self.preferred_contact,
        }


@dataclass(frozen=True)
class SubmissionResult:
    ok: bool
    message: str = ""


SUBMITTED_MESSAGE = "Your case has been submitted successfully. We will review it and contact you soon."


class CaseService:
    def __init__(self, engine: Engine, *, user_table: str = "user_account", id_column: str = "user_id") -> None:
        self.engine = engine
        self.user_table = user_table
        self.id_column = id_column

    def _ensure_client(self, conn: Connection, user_id: Any, preferred_contact: str, profile: SchemaProfile) -> Optional[Any]:
        """Return the client id for a user, creating the client row from the user's profile."""
        found = conn.execute(sa.select(CLIENT.c.client_id).where(CLIENT.c.user_id == user_id).limit(1)).first()
        if found is not None:
            return found.client_id

        fields = profile.profile_columns()
        users = sa.table(self.user_table, *(sa.column(c) for c in dict.fromkeys(fields + [self.id_column])))
        user = conn.execute(
            sa.select(*(users.c[c] for c in dict.fromkeys([self.id_column] + fields)))
            .where(users.c[self.id_column] == user_id)
            .limit(1)
        ).first()
        if user is None:
            return None

        values = {c: user._mapping[c] for c in fields}
        conn.execute(
            sa.insert(CLIENT).values(
                user_id=user_id,
                preferred_contact_method=preferred_contact,
                created_on=datetime.now(),
                **values,
            )
        )
        created = conn.execute(sa.select(CLIENT.c.client_id).where(CLIENT.c.user_id == user_id).limit(1)).first()
        return created.client_id if created is not None else None

    def submit(self, user_id: Any, submission: CaseSubmission, profile: SchemaProfile) -> SubmissionResult:
        sub = submission.cleaned()
        if not (sub.title and sub.description and sub.practice_area and sub.preferred_contact):
            return SubmissionResult(ok=False, message="All fields are required.")
        practice_area_id = PRACTICE_AREAS.get(sub.practice_area)
        if not practice_area_id:
            return SubmissionResult(ok=False, message="Invalid practice area selected.")
        if user_id is None:
            return SubmissionResult(ok=False, message="You must be logged in to submit a case.")

        try:
            with self.engine.begin() as conn:
                client_id = self._ensure_client(conn, user_id, sub.preferred_contact, profile)
                if client_id is None:
                    return SubmissionResult(ok=False, message="User account not found. Please contact support.")
                conn.execute(
                    sa.insert(CASE_INFO).values(
                        title=sub.title,
                        description=sub.description,
                        opened_on=datetime.now(),
                        closed_on=None,
                        priority="low",
                        reference_no=0,
                        is_public_submission=1,
                        status_id=1,
                        practice_area_id=practice_area_id,
                        client_id=client_id,
                    )
                )
        except SQLAlchemyError as exc:
            log.error("Case submission error: %s", exc)
            return SubmissionResult(ok=False, message="Unable to submit your case right now. Please try again later.")
        return SubmissionResult(ok=True, message=SUBMITTED_MESSAGE)

    def list_cases(self, profile: SchemaProfile) -> List[Dict[str, Any]]:
        """Cases joined with their client, owning user and practice area, newest first."""
        names = [c for c in ("first_name", "last_name") if profile.has(c)]
        users = sa.table(self.user_table, *(sa.column(c) for c in dict.fromkeys([self.id_column] + names)))
        stmt = (
            sa.select(
                CASE_INFO.c.case_id,
                CASE_INFO.c.title,
                CASE_INFO.c.description,
                CASE_INFO.c.opened_on,
                CASE_INFO.c.priority,
                CASE_INFO.c.reference_no,
                CASE_INFO.c.status_id,
                *(users.c[c] for c in names),
                CLIENT.c.email,
                CLIENT.c.phone,
                CLIENT.c.preferred_contact_method,
                PRACTICE_AREA.c.name.label("practice_area_name"),
            )
            .select_from(
                CASE_INFO.join(CLIENT, CASE_INFO.c.client_id == CLIENT.c.client_id)
                .join(users, CLIENT.c.user_id == users.c[self.id_column])
                .outerjoin(PRACTICE_AREA, CASE_INFO.c.practice_area_id == PRACTICE_AREA.c.practice_area_id)
            )
            .order_by(CASE_INFO.c.opened_on.desc())
        )
        try:
            with self.engine.connect() as conn:
                return [dict(r._mapping) for r in conn.execute(stmt)]
        except SQLAlchemyError as exc:
            log.error("Error fetching cases: %s", exc)
            return []
