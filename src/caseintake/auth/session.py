# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import os
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

COOKIE_NAME = os.getenv("INTAKE_COOKIE_NAME", "intake_session")
DEFAULT_MAX_AGE_SECONDS = int(os.getenv("INTAKE_SESSION_MAX_AGE", "28800"))  # 8 hours


def _serializer() -> URLSafeTimedSerializer:
    secret = os.getenv("SECRET_KEY") or os.getenv("INTAKE_SECRET_KEY")
    if not secret:
        raise RuntimeError("Missing SECRET_KEY (or INTAKE_SECRET_KEY) in environment")
    salt = os.getenv("INTAKE_SESSION_SALT", "intake.session.v1")
    return URLSafeTimedSerializer(secret_key=secret, salt=salt)


@dataclass
class SessionData:
    is_logged_in: bool = False
    user_id: Any = None
    username: str = ""
    success_message: str = ""

    def pop_success_message(self) -> str:
        msg, self.success_message = self.success_message, ""
        return msg


def sign_session(session_id: str) -> str:
    s = _serializer()
    return s.dumps({"sid": session_id})


def verify_session(token: str, *, max_age: int = DEFAULT_MAX_AGE_SECONDS) -> Optional[str]:
    if not token:
        return None
    s = _serializer()
    try:
        data = s.loads(token, max_age=max_age)
        sid = str((data or {}).get("sid") or "").strip()
        return sid or None
    except (BadSignature, BadTimeSignature):
        return None


class SessionStore:
    """In-process session table keyed by a random id carried in a signed cookie."""

    def __init__(self, max_age: int = DEFAULT_MAX_AGE_SECONDS) -> None:
        self.max_age = max_age
        self._lock = threading.Lock()
        self._sessions: Dict[str, Tuple[float, SessionData]] = {}

    def create(self, data: Optional[SessionData] = None) -> Tuple[str, SessionData]:
        sid = secrets.token_urlsafe(32)
        data = data or SessionData()
        now = time.monotonic()
        with self._lock:
            expired = [k for k, (created, _) in self._sessions.items() if now - created > self.max_age]
            for k in expired:
                del self._sessions[k]
            self._sessions[sid] = (now, data)
        return sid, data

    def get(self, sid: Optional[str]) -> Optional[SessionData]:
        if not sid:
            return None
        with self._lock:
            entry = self._sessions.get(sid)
            if entry is None:
                return None
            created, data = entry
            if time.monotonic() - created > self.max_age:
                del self._sessions[sid]
                return None
            return data

    def destroy(self, sid: Optional[str]) -> None:
        if not sid:
            return
        with self._lock:
            self._sessions.pop(sid, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
