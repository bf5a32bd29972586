# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional

PASSWORD_ITERATIONS = 250000
PASSWORD_KEY_LENGTH = 64
PASSWORD_DIGEST = "sha512"
SALT_BYTES = 16


@dataclass(frozen=True)
class PasswordRecord:
    salt: str
    hash: str


def _derive(password: str, salt: str) -> str:
    # The hex salt string itself is the KDF salt; existing records depend on it.
    return hashlib.pbkdf2_hmac(
        PASSWORD_DIGEST,
        password.encode("utf-8"),
        salt.encode("utf-8"),
        PASSWORD_ITERATIONS,
        dklen=PASSWORD_KEY_LENGTH,
    ).hex()


def derive_record(password: str) -> PasswordRecord:
    if not password:
        raise ValueError("Empty password")
    salt = secrets.token_hex(SALT_BYTES)
    return PasswordRecord(salt=salt, hash=_derive(password, salt))


def verify_password(password: str, salt: Optional[str], hash_value: Optional[str]) -> bool:
    if not salt or not hash_value or password is None:
        return False
    attempt = _derive(password, salt)
    if len(hash_value) != len(attempt):
        return False
    try:
        expected = bytes.fromhex(hash_value)
    except ValueError:
        return False
    return hmac.compare_digest(expected, bytes.fromhex(attempt))


def encode_record(record: PasswordRecord) -> str:
    return f"{record.salt}:{record.hash}"


def decode_record(value: Optional[str]) -> Optional[PasswordRecord]:
    """Parse a combined ``salt:hash`` value; anything malformed is None."""
    if not value or ":" not in value:
        return None
    salt, _, hash_value = value.partition(":")
    if not salt or not hash_value:
        return None
    return PasswordRecord(salt=salt, hash=hash_value)
