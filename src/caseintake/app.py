# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import sqlalchemy as sa
from fastapi import FastAPI, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from caseintake.auth.session import COOKIE_NAME, SessionData, SessionStore, sign_session
from caseintake.auth.users import AccountService
from caseintake.core.config import Settings, configure_logging, load_settings
from caseintake.core.schema import SchemaProfile, legacy_profile, named_profile, resolve_profile
from caseintake.infra.user_repo import UserRepository
from caseintake.permissions import LOGIN_REQUIRED_MESSAGE, cookie_settings, current_session, load_session, may_proceed
from caseintake.services.case_service import PRACTICE_AREAS, CaseService, CaseSubmission

log = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))

INVALID_LOGIN = "Invalid login"
REGISTERED_MESSAGE = "Account created successfully. Please log in."


def _render(request: Request, template_name: str, ctx: Optional[dict] = None):
    """TemplateResponse wrapper injecting the current session."""
    base_ctx = {"current_session": current_session(request)}
    merged = {**base_ctx, **(ctx or {})}
    return templates.TemplateResponse(request, template_name, merged)


def _login_page(request: Request, *, error: str = "", success: str = "", username: str = ""):
    return _render(
        request,
        "login.html",
        {"error_message": error, "success_message": success, "username_value": username},
    )


def _install_accounts(app: FastAPI, profile: SchemaProfile) -> None:
    # Replaced wholesale; in-flight requests keep the service they started with.
    settings: Settings = app.state.settings
    app.state.profile = profile
    app.state.accounts = AccountService(
        app.state.users_repo,
        profile,
        allow_plaintext=settings.allow_plaintext_upgrade,
    )


async def _detect_schema(app: FastAPI) -> None:
    settings: Settings = app.state.settings
    repo: UserRepository = app.state.users_repo
    profile = await run_in_threadpool(resolve_profile, settings.schema_profile, repo.probe_profile)
    _install_accounts(app, profile)
    log.info(
        "User schema profile '%s': %s (legacy password column: %s)",
        profile.name,
        dict(profile.capabilities),
        profile.legacy_password,
    )


def _report_detection_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.error("User schema detection failed; staying on legacy profile: %s", exc, exc_info=exc)


def _set_session_cookie(response, sid: str, max_age: int) -> None:
    response.set_cookie(COOKIE_NAME, sign_session(sid), max_age=max_age, **cookie_settings())


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    profile: Optional[SchemaProfile] = None,
) -> FastAPI:
    """Build the intake app.

    Without an explicit ``profile`` (argument or INTAKE_SCHEMA_PROFILE) the
    user schema is detected in the background at startup; until that
    finishes the fail-closed legacy profile is used.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    if profile is None and settings.schema_profile:
        profile = named_profile(settings.schema_profile)
    owns_engine = engine is None
    if engine is None:
        engine = sa.create_engine(settings.database_url, pool_pre_ping=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = None
        if profile is None:
            task = asyncio.create_task(_detect_schema(app))
            task.add_done_callback(_report_detection_failure)
        yield
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if owns_engine:
            engine.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.users_repo = UserRepository.from_settings(engine, settings)
    app.state.cases = CaseService(engine, user_table=settings.user_table, id_column=settings.id_column)
    app.state.sessions = SessionStore()
    _install_accounts(app, profile or legacy_profile())

    app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

    @app.middleware("http")
    async def _auth_gate(request: Request, call_next):
        request.state.session_id, request.state.session = load_session(request, app.state.sessions)
        if may_proceed(request):
            return await call_next(request)
        return _login_page(request, error=LOGIN_REQUIRED_MESSAGE)

    # --- public pages ---

    @app.get("/", response_class=HTMLResponse)
    @app.get("/index", response_class=HTMLResponse)
    def index(request: Request):
        return _render(request, "index.html")

    @app.get("/about", response_class=HTMLResponse)
    def about(request: Request):
        return _render(request, "about.html")

    @app.get("/faq", response_class=HTMLResponse)
    def faq(request: Request):
        return _render(request, "faq.html")

    # --- authentication ---

    @app.get("/login", response_class=HTMLResponse)
    def login_get(request: Request):
        sess = current_session(request)
        success = sess.pop_success_message() if sess else ""
        return _login_page(request, success=success)

    @app.post("/login")
    async def login_post(request: Request, username: str = Form(""), password: str = Form("")):
        username = username.strip()
        if not username or not password:
            return _login_page(request, error="Username and password are required", username=username)

        accounts: AccountService = app.state.accounts
        result = await run_in_threadpool(accounts.authenticate, username, password)
        if not result.ok:
            return _login_page(request, error=INVALID_LOGIN, username=username)

        sessions: SessionStore = app.state.sessions
        sessions.destroy(request.state.session_id)
        sid, _ = sessions.create(
            SessionData(is_logged_in=True, user_id=result.user_id, username=result.login_identifier)
        )
        resp = RedirectResponse(url="/", status_code=303)
        _set_session_cookie(resp, sid, sessions.max_age)
        return resp

    @app.get("/logout")
    def logout(request: Request):
        app.state.sessions.destroy(request.state.session_id)
        resp = RedirectResponse(url="/", status_code=303)
        resp.delete_cookie(COOKIE_NAME)
        return resp

    def _registration_form(request: Request, error: str = "", values: Optional[dict] = None):
        accounts: AccountService = app.state.accounts
        fields = accounts.required_fields()
        return _render(
            request,
            "create_login.html",
            {
                "error_message": error,
                "fields": fields,
                "form_values": {f: (values or {}).get(f, "") for f in fields},
                "action": request.url.path,
            },
        )

    @app.get("/create-login", response_class=HTMLResponse)
    @app.get("/register", response_class=HTMLResponse)
    def create_login_get(request: Request):
        return _registration_form(request)

    @app.post("/create-login")
    @app.post("/register")
    async def create_login_post(request: Request):
        form = await request.form()
        values = {k: str(v).strip() for k, v in form.items() if k not in ("password", "confirm_password")}
        password = str(form.get("password") or "")
        confirm = form.get("confirm_password")

        accounts: AccountService = app.state.accounts
        result = await run_in_threadpool(
            accounts.register_credential,
            values,
            password,
            None if confirm is None else str(confirm),
        )
        if not result.ok:
            return _registration_form(request, error=result.message, values=values)

        sessions: SessionStore = app.state.sessions
        resp = RedirectResponse(url="/login", status_code=303)
        sess = current_session(request)
        if sess is not None:
            sess.success_message = REGISTERED_MESSAGE
        else:
            sid, _ = sessions.create(SessionData(success_message=REGISTERED_MESSAGE))
            _set_session_cookie(resp, sid, sessions.max_age)
        return resp

    # --- user administration ---

    @app.get("/users", response_class=HTMLResponse)
    def users(request: Request):
        accounts: AccountService = app.state.accounts
        repo: UserRepository = app.state.users_repo
        columns = list(dict.fromkeys([repo.id_column, repo.login_column] + accounts.profile.profile_columns()))
        try:
            rows = repo.list_users(columns)
        except SQLAlchemyError as exc:
            log.error("Database query error: %s", exc)
            return _render(
                request,
                "users.html",
                {"users": [], "columns": columns, "error_message": "Unable to load users right now."},
            )
        log.info("Retrieved %d users", len(rows))
        return _render(request, "users.html", {"users": rows, "columns": columns, "error_message": ""})

    @app.post("/deleteUser/{user_id}")
    def delete_user(user_id: int):
        repo: UserRepository = app.state.users_repo
        try:
            repo.delete(user_id)
        except SQLAlchemyError as exc:
            log.error("Delete user %s failed: %s", user_id, exc)
        return RedirectResponse(url="/users", status_code=303)

    # --- case intake ---

    def _submit_page(request: Request, submission: CaseSubmission, *, error: str = "", success: str = ""):
        return _render(
            request,
            "submit.html",
            {
                "success_message": success,
                "error_message": error,
                "form_values": submission.form_values(),
                "practice_areas": list(PRACTICE_AREAS),
            },
        )

    @app.get("/submit", response_class=HTMLResponse)
    def submit_get(request: Request):
        return _submit_page(request, CaseSubmission())

    @app.post("/submit", response_class=HTMLResponse)
    def submit_post(
        request: Request,
        title: str = Form(""),
        description: str = Form(""),
        practice_area: str = Form("", alias="practice-area"),
        preferred_contact: str = Form("", alias="preferred-contact"),
    ):
        submission = CaseSubmission(title, description, practice_area, preferred_contact).cleaned()
        sess = current_session(request)
        cases: CaseService = app.state.cases
        result = cases.submit(sess.user_id if sess else None, submission, app.state.profile)
        if result.ok:
            return _submit_page(request, CaseSubmission(), success=result.message)
        return _submit_page(request, submission, error=result.message)

    @app.get("/review", response_class=HTMLResponse)
    def review(request: Request):
        cases: CaseService = app.state.cases
        return _render(request, "review.html", {"cases": cases.list_cases(app.state.profile)})

    return app


app = create_app()
