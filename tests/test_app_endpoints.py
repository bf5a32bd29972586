import asyncio
from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from caseintake.app import _detect_schema, _report_detection_failure, create_app
from caseintake.auth.passwords import derive_record, verify_password
from caseintake.auth.session import COOKIE_NAME
from caseintake.core.schema import named_profile
from caseintake.permissions import LOGIN_REQUIRED_MESSAGE, is_public_path

from conftest import create_case_tables, fetch_user, insert_user, split_values

pytestmark = pytest.mark.usefixtures("fast_kdf")


@pytest.fixture()
def app(full_engine, settings):
    create_case_tables(full_engine)
    return create_app(settings, engine=full_engine, profile=named_profile("full"))


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def user_id(full_engine, fast_kdf):
    return insert_user(full_engine, email="a@b.com", first_name="Ada", last_name="Lovelace", **split_values(derive_record("hunter2")))


def _login(client, username="a@b.com", password="hunter2"):
    return client.post("/login", data={"username": username, "password": password})


@pytest.mark.parametrize("path", ["/", "/index", "/about", "/faq", "/login", "/create-login", "/register"])
def test_public_paths_served_without_session(client, path):
    r = client.get(path)
    assert r.status_code == 200
    assert LOGIN_REQUIRED_MESSAGE not in r.text


def test_static_prefix_is_public():
    assert is_public_path("/static/style.css")
    assert not is_public_path("/users")
    assert not is_public_path("/indexx")


@pytest.mark.parametrize("path", ["/users", "/submit", "/review", "/does-not-exist"])
def test_protected_paths_render_login_without_session(client, path):
    r = client.get(path)
    assert r.status_code == 200
    assert LOGIN_REQUIRED_MESSAGE in r.text
    assert 'name="password"' in r.text


def test_protected_post_is_not_forwarded(client, full_engine, user_id):
    r = client.post(f"/deleteUser/{user_id}")
    assert LOGIN_REQUIRED_MESSAGE in r.text
    assert fetch_user(full_engine, user_id) is not None


def test_forged_cookie_is_not_a_session(client, user_id):
    client.cookies.set(COOKIE_NAME, "forged.value")
    assert LOGIN_REQUIRED_MESSAGE in client.get("/users").text


def test_login_grants_access(client, user_id):
    r = _login(client)
    assert r.status_code == 200
    assert "Log out (a@b.com)" in r.text

    r = client.get("/users")
    assert "User accounts" in r.text
    assert "a@b.com" in r.text


@pytest.mark.parametrize("username,password", [("a@b.com", "wrong"), ("nobody@b.com", "hunter2")])
def test_failed_login_does_not_reveal_which_part_was_wrong(client, user_id, username, password):
    r = _login(client, username, password)
    assert "Invalid login" in r.text
    assert f'value="{username}"' in r.text
    assert LOGIN_REQUIRED_MESSAGE in client.get("/users").text


def test_login_requires_both_fields(client):
    r = _login(client, "", "")
    assert "Username and password are required" in r.text


def test_logout_destroys_session(client, app, user_id):
    _login(client)
    assert len(app.state.sessions) == 1
    client.get("/logout")
    assert len(app.state.sessions) == 0
    assert LOGIN_REQUIRED_MESSAGE in client.get("/users").text


def test_create_login_then_login(client, full_engine):
    form = {
        "email": "new@b.com",
        "first_name": "Grace",
        "last_name": "Hopper",
        "phone": "555-0101",
        "password": "s3cret",
        "confirm_password": "s3cret",
    }
    r = client.post("/create-login", data=form)
    assert "Account created successfully. Please log in." in r.text

    # one-shot message
    assert "Account created successfully" not in client.get("/login").text

    r = _login(client, "new@b.com", "s3cret")
    assert "Log out (new@b.com)" in r.text


def test_create_login_mismatch_keeps_form_values(client):
    r = client.post(
        "/register",
        data={"email": "x@b.com", "first_name": "X", "last_name": "Y", "phone": "1", "password": "a", "confirm_password": "b"},
    )
    assert "Passwords do not match." in r.text
    assert 'value="x@b.com"' in r.text


def test_create_login_duplicate(client, user_id):
    r = client.post(
        "/create-login",
        data={"email": "a@b.com", "first_name": "A", "last_name": "B", "phone": "1", "password": "p", "confirm_password": "p"},
    )
    assert "An account with the provided email already exists." in r.text


def test_delete_user(client, full_engine, user_id):
    other = insert_user(full_engine, email="other@b.com")
    _login(client)
    r = client.post(f"/deleteUser/{other}")
    assert r.status_code == 200
    assert fetch_user(full_engine, other) is None
    assert "other@b.com" not in r.text


def test_submit_and_review_case(client, user_id):
    _login(client)
    r = client.post(
        "/submit",
        data={
            "title": "Slipped in the lobby",
            "description": "Wet floor, no sign.",
            "practice-area": "Slip/Trip Fall",
            "preferred-contact": "Phone",
        },
    )
    assert "Your case has been submitted successfully." in r.text

    r = client.get("/review")
    assert "Slipped in the lobby" in r.text
    assert "Slip/Trip Fall" in r.text


def test_submit_validation_error_keeps_values(client, user_id):
    _login(client)
    r = client.post("/submit", data={"title": "Only a title"})
    assert "All fields are required." in r.text
    assert 'value="Only a title"' in r.text


def test_plaintext_account_upgraded_on_login(full_engine, settings):
    app = create_app(replace(settings, allow_plaintext_upgrade=True), engine=full_engine, profile=named_profile("full"))
    client = TestClient(app)
    uid = insert_user(full_engine, email="a@b.com", password="hunter2")

    r = _login(client)
    assert "Log out (a@b.com)" in r.text

    row = fetch_user(full_engine, uid)
    assert row["password"] == ""
    assert verify_password("hunter2", row["password_salt"], row["password_hash"])


def test_startup_detection_replaces_default_profile(full_engine, settings):
    app = create_app(settings, engine=full_engine)
    assert app.state.profile.name == "legacy"
    default_accounts = app.state.accounts

    asyncio.run(_detect_schema(app))

    assert app.state.profile.name == "detected"
    assert app.state.profile.supports_split
    assert app.state.accounts is not default_accounts
    assert app.state.accounts.profile is app.state.profile


def test_startup_uses_named_profile(full_engine, settings):
    app = create_app(replace(settings, schema_profile="split"), engine=full_engine)
    asyncio.run(_detect_schema(app))
    assert app.state.profile.name == "split"


def test_unknown_profile_name_fails_at_startup(full_engine, settings):
    with pytest.raises(ValueError):
        create_app(replace(settings, schema_profile="nonsense"), engine=full_engine)


def test_detection_failure_is_logged_and_keeps_legacy_profile(full_engine, settings, monkeypatch, caplog):
    app = create_app(settings, engine=full_engine)

    def broken_detection():
        raise RuntimeError("reflection exploded")

    monkeypatch.setattr(app.state.users_repo, "probe_profile", broken_detection)

    async def run():
        task = asyncio.ensure_future(_detect_schema(app))
        task.add_done_callback(_report_detection_failure)
        with pytest.raises(RuntimeError):
            await task

    with caplog.at_level("ERROR", logger="caseintake.app"):
        asyncio.run(run())

    assert "User schema detection failed" in caplog.text
    assert "reflection exploded" in caplog.text
    assert app.state.profile.name == "legacy"
