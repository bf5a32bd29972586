# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import os
from typing import Optional, Tuple

from fastapi import Request

from caseintake.auth.session import COOKIE_NAME, SessionData, SessionStore, verify_session

PUBLIC_PATHS = frozenset({"/", "/index", "/faq", "/about", "/login", "/logout", "/create-login", "/register"})
PUBLIC_PREFIXES = ("/static/",)

LOGIN_REQUIRED_MESSAGE = "Please log in to access this page"


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def load_session(request: Request, store: SessionStore) -> Tuple[Optional[str], Optional[SessionData]]:
    token = request.cookies.get(COOKIE_NAME, "")
    sid = verify_session(token, max_age=store.max_age)
    data = store.get(sid)
    if data is None:
        return None, None
    return sid, data


def current_session(request: Request) -> Optional[SessionData]:
    return getattr(request.state, "session", None)


def is_logged_in(request: Request) -> bool:
    sess = current_session(request)
    return bool(sess and sess.is_logged_in)


def may_proceed(request: Request) -> bool:
    """Gate decision: public path, or a session flagged as logged in."""
    return is_public_path(request.url.path) or is_logged_in(request)


def cookie_settings() -> dict:
    secure = os.getenv("INTAKE_COOKIE_SECURE", "false").lower() in {"1", "true", "yes", "y"}
    return {"httponly": True, "samesite": "lax", "secure": secure}
