from urllib.parse import urlparse

import pytest

from app import create_app


class UntouchableStore:
    def __getattr__(self, name):
        raise AssertionError(f"store.{name} must not be used")


@pytest.fixture
def guarded_client(tmp_path):
    app = create_app(
        store=UntouchableStore(),
        TESTING=True,
        UPLOAD_DIR=str(tmp_path / "images"),
        UPLOAD_STAGING_DIR=str(tmp_path / "staging"),
        LOG_DIR="",
    )
    return app.test_client()


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/admin/"),
        ("get", "/admin/add"),
        ("post", "/admin/add"),
        ("get", "/admin/edit/1"),
        ("post", "/admin/edit/1"),
        ("get", "/admin/delete/1"),
    ],
)
def test_admin_routes_redirect_to_login_without_session(guarded_client, method, path):
    resp = getattr(guarded_client, method)(path)
    assert resp.status_code == 302
    assert urlparse(resp.headers["Location"]).path == "/admin/login"


def test_login_page_renders_without_session(guarded_client):
    assert guarded_client.get("/admin/login").status_code == 200


def test_login_failures_share_one_message(client, login):
    wrong_password = login(password="nope")
    unknown_email = login(email="nobody@example.com", password="s3cret")

    assert wrong_password.status_code == unknown_email.status_code == 200
    for resp in (wrong_password, unknown_email):
        body = resp.get_data(as_text=True)
        assert "Invalid email or password" in body
    with client.session_transaction() as sess:
        assert "user" not in sess


def test_login_sets_signed_session(client, login):
    resp = login()
    assert resp.status_code == 302
    assert urlparse(resp.headers["Location"]).path == "/admin/"
    with client.session_transaction() as sess:
        assert sess["user"] == "Ada"
        assert sess.permanent
    assert client.get("/admin/").status_code == 200


def test_login_follows_local_next(client):
    resp = client.post(
        "/admin/login?next=/admin/add",
        data={"email": "ada@example.com", "password": "s3cret"},
    )
    assert resp.headers["Location"].endswith("/admin/add")


def test_login_ignores_external_next(client):
    resp = client.post(
        "/admin/login?next=//evil.example.com/",
        data={"email": "ada@example.com", "password": "s3cret"},
    )
    assert urlparse(resp.headers["Location"]).path == "/admin/"


def test_email_is_trimmed(client, login):
    resp = login(email="  ada@example.com ")
    assert resp.status_code == 302


def test_forged_cookie_is_not_a_session(client):
    client.set_cookie("session", "Ada")
    resp = client.get("/admin/")
    assert resp.status_code == 302


def test_cookie_signed_with_another_key_is_rejected(app, store, tmp_path):
    other = create_app(store=store, TESTING=True, SECRET_KEY="other-key", LOG_DIR="")
    other_client = other.test_client()
    with other_client.session_transaction() as sess:
        sess["user"] = "Ada"
    forged = other_client.get_cookie("session").value

    client = app.test_client()
    client.set_cookie("session", forged)
    assert client.get("/admin/").status_code == 302


def test_logout_clears_session(client, login):
    login()
    resp = client.get("/admin/logout")
    assert urlparse(resp.headers["Location"]).path == "/admin/login"
    assert client.get("/admin/").status_code == 302
