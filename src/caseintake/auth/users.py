# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from caseintake.auth.passwords import PasswordRecord, decode_record, derive_record, encode_record, verify_password
from caseintake.core.schema import SchemaProfile
from caseintake.infra.user_repo import UserRepository

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthResult:
    ok: bool
    user_id: Any = None
    login_identifier: str = ""


class RegistrationFailure(str, Enum):
    MISSING_FIELDS = "missing_fields"
    PASSWORD_MISMATCH = "password_mismatch"
    DUPLICATE_ACCOUNT = "duplicate_account"
    UNAVAILABLE = "unavailable"


FAILURE_MESSAGES = {
    RegistrationFailure.MISSING_FIELDS: "All fields are required.",
    RegistrationFailure.PASSWORD_MISMATCH: "Passwords do not match.",
    RegistrationFailure.DUPLICATE_ACCOUNT: "An account with the provided email already exists.",
    RegistrationFailure.UNAVAILABLE: "Unable to create an account right now. Please try again.",
}


@dataclass(frozen=True)
class RegistrationResult:
    ok: bool
    reason: Optional[RegistrationFailure] = None

    @property
    def message(self) -> str:
        return FAILURE_MESSAGES.get(self.reason, "") if self.reason else ""


class CredentialResolver:
    """Decides how a user row's stored credential is read, checked and upgraded.

    Stored formats, strongest first:
      - split ``password_hash`` / ``password_salt`` columns
      - combined ``salt:hash`` in the legacy password column
      - plaintext in the legacy password column (only honoured when
        ``allow_plaintext`` is set and the value is not a ``salt:hash``
        record)

    Weaker formats are rewritten after a successful login. Upgrades are best
    effort: a failed write is logged and the login still succeeds. There is
    no transaction around read/verify/write, so concurrent logins for one
    account may both write; every format written verifies, so the last
    write winning is harmless.
    """

    def __init__(self, repo: UserRepository, profile: SchemaProfile, *, allow_plaintext: bool = False) -> None:
        self.repo = repo
        self.profile = profile
        self.allow_plaintext = allow_plaintext

    def columns_for_login(self) -> List[str]:
        cols = [self.repo.id_column, self.repo.login_column]
        if self.profile.legacy_password:
            cols.append(self.repo.legacy_password_column)
        if self.profile.supports_split:
            cols += ["password_hash", "password_salt"]
        return list(dict.fromkeys(cols))

    def verify_row(self, row: Mapping[str, Any], password: str) -> bool:
        if not password:
            return False
        user_id = row.get(self.repo.id_column)

        if self.profile.supports_split:
            stored_hash = row.get("password_hash")
            stored_salt = row.get("password_salt")
            if stored_hash and stored_salt:
                return verify_password(password, str(stored_salt), str(stored_hash))

        legacy = ""
        if self.profile.legacy_password:
            legacy = str(row.get(self.repo.legacy_password_column) or "")
        if not legacy:
            return False

        record = decode_record(legacy)
        if record is not None:
            # A combined record is never compared as cleartext.
            if not verify_password(password, record.salt, record.hash):
                return False
            if self.profile.supports_split:
                self._upgrade(user_id, record, source="combined")
            return True

        if self.allow_plaintext and hmac.compare_digest(legacy.encode("utf-8"), password.encode("utf-8")):
            self._upgrade(user_id, derive_record(password), source="plaintext", clear_legacy=True)
            return True

        return False

    def credential_values(self, record: PasswordRecord, *, clear_legacy: bool = False) -> Dict[str, str]:
        """Column values holding ``record`` in the strongest format the schema has."""
        values: Dict[str, str] = {}
        if self.profile.supports_split:
            values["password_hash"] = record.hash
            values["password_salt"] = record.salt
            if clear_legacy and self.profile.legacy_password:
                values[self.repo.legacy_password_column] = ""
        elif self.profile.legacy_password:
            values[self.repo.legacy_password_column] = encode_record(record)
        return values

    def store(self, user_id: Any, record: PasswordRecord, *, clear_legacy: bool = False) -> bool:
        values = self.credential_values(record, clear_legacy=clear_legacy)
        if not values:
            log.warning("Schema profile '%s' has no credential column; nothing stored", self.profile.name)
            return False
        self.repo.update(user_id, values)
        return True

    def _upgrade(self, user_id: Any, record: PasswordRecord, *, source: str, clear_legacy: bool = False) -> None:
        try:
            if self.store(user_id, record, clear_legacy=clear_legacy):
                log.info("Upgraded %s credential for user %s", source, user_id)
        except SQLAlchemyError as exc:
            log.warning("Credential upgrade for user %s failed: %s", user_id, exc)


class AccountService:
    """Login and registration entry points used by the route handlers."""

    def __init__(self, repo: UserRepository, profile: SchemaProfile, *, allow_plaintext: bool = False) -> None:
        self.repo = repo
        self.profile = profile
        self.resolver = CredentialResolver(repo, profile, allow_plaintext=allow_plaintext)

    def authenticate(self, identifier: str, password: str) -> AuthResult:
        ident = (identifier or "").strip()
        if not ident or not password:
            return AuthResult(ok=False)
        try:
            row = self.repo.fetch_by_login(ident, self.resolver.columns_for_login())
        except SQLAlchemyError as exc:
            log.error("Login lookup failed: %s", exc)
            return AuthResult(ok=False)
        if row is None or not self.resolver.verify_row(row, password):
            return AuthResult(ok=False)
        return AuthResult(
            ok=True,
            user_id=row.get(self.repo.id_column),
            login_identifier=str(row.get(self.repo.login_column) or ident),
        )

    def required_fields(self) -> List[str]:
        return list(dict.fromkeys([self.repo.login_column] + self.profile.profile_columns()))

    def register_credential(
        self,
        form_fields: Mapping[str, Any],
        password: str,
        confirm_password: Optional[str] = None,
    ) -> RegistrationResult:
        fields = {name: str(form_fields.get(name) or "").strip() for name in self.required_fields()}
        if any(not v for v in fields.values()) or not password or confirm_password == "":
            return RegistrationResult(ok=False, reason=RegistrationFailure.MISSING_FIELDS)
        if confirm_password is not None and password != confirm_password:
            return RegistrationResult(ok=False, reason=RegistrationFailure.PASSWORD_MISMATCH)

        if not self.profile.supports_split and not self.profile.legacy_password:
            log.error("Schema profile '%s' has no credential column; cannot register", self.profile.name)
            return RegistrationResult(ok=False, reason=RegistrationFailure.UNAVAILABLE)

        try:
            if self.repo.exists(fields[self.repo.login_column]):
                return RegistrationResult(ok=False, reason=RegistrationFailure.DUPLICATE_ACCOUNT)
            values: Dict[str, Any] = dict(fields)
            values.update(self.resolver.credential_values(derive_record(password), clear_legacy=True))
            self.repo.insert(values)
        except SQLAlchemyError as exc:
            log.error("Create login error: %s", exc)
            return RegistrationResult(ok=False, reason=RegistrationFailure.UNAVAILABLE)
        return RegistrationResult(ok=True)
