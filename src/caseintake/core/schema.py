# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Schema profiles for the user table.

Deployments of the intake app run against user tables of different shapes
(plaintext legacy column only, split hash/salt columns, profile fields, no
legacy column at all). A profile is resolved once at startup and then passed
around as an immutable value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping

TRACKED_COLUMNS = ("password_hash", "password_salt", "email", "first_name", "last_name", "phone")
PROFILE_FIELDS = ("email", "first_name", "last_name", "phone")
SPLIT_COLUMNS = ("password_hash", "password_salt")


def capability_map(present: Iterable[str] = ()) -> Mapping[str, bool]:
    """Read-only map of every tracked column to whether it is present."""
    found = set(present)
    return MappingProxyType({col: col in found for col in TRACKED_COLUMNS})


@dataclass(frozen=True)
class SchemaProfile:
    name: str
    capabilities: Mapping[str, bool] = field(default_factory=capability_map)
    legacy_password: bool = True

    def has(self, column: str) -> bool:
        return bool(self.capabilities.get(column, False))

    @property
    def supports_split(self) -> bool:
        return all(self.has(col) for col in SPLIT_COLUMNS)

    def profile_columns(self) -> List[str]:
        return [col for col in PROFILE_FIELDS if self.has(col)]


# name -> (present tracked columns, legacy password column exists)
PROFILES: Dict[str, tuple] = {
    "legacy": ((), True),
    "split": (SPLIT_COLUMNS, True),
    "full": (TRACKED_COLUMNS, True),
    "hardened": (TRACKED_COLUMNS, False),
}


def named_profile(name: str) -> SchemaProfile:
    key = (name or "").strip().lower()
    if key not in PROFILES:
        raise ValueError(f"Unknown schema profile '{name}' (expected one of: {', '.join(PROFILES)})")
    present, legacy = PROFILES[key]
    return SchemaProfile(name=key, capabilities=capability_map(present), legacy_password=legacy)


def legacy_profile() -> SchemaProfile:
    """Fail-closed default used until detection has completed."""
    return named_profile("legacy")


def resolve_profile(profile_name: str, probe: Callable[[], SchemaProfile]) -> SchemaProfile:
    if profile_name:
        return named_profile(profile_name)
    return probe()
