# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Authentication helpers.

This package provides:
- Salted PBKDF2 password records (split and combined ``salt:hash`` forms)
- Login/registration against the user table, with lazy credential upgrades
- Server-side sessions referenced by a signed cookie (itsdangerous)
"""
