import io
from datetime import datetime, timedelta

import pytest

from app import create_app, hash_password
from store import JsonStore


@pytest.fixture
def store(tmp_path):
    store = JsonStore(tmp_path / "blog.json")
    store.create_user(name="Ada", email="ada@example.com", password=hash_password("s3cret"))
    store.create_user(name="Grace", email="grace@example.com", password=hash_password("hopper"))
    return store


@pytest.fixture
def app(store, tmp_path):
    app = create_app(
        store=store,
        TESTING=True,
        SECRET_KEY="test-secret",
        UPLOAD_DIR=str(tmp_path / "images"),
        UPLOAD_STAGING_DIR=str(tmp_path / "staging"),
        LOG_DIR="",
        ENFORCE_POST_OWNERSHIP=False,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(email="ada@example.com", password="s3cret"):
        return client.post("/admin/login", data={"email": email, "password": password})

    return _login


@pytest.fixture
def make_post(store):
    base = datetime(2024, 1, 1, 12, 0, 0)

    def _make(n=0, author="Ada", **fields):
        data = {
            "title": f"Post {n}",
            "subtitle": f"Subtitle {n}",
            "content": f"<p>Body {n}</p>",
            "author": author,
            "slug": f"post-{n}",
            "image": f"/images/{n}.png",
        }
        data.update(fields)
        return store.create_post(data, created_at=base + timedelta(minutes=n))

    return _make


def image_file(name="cover.png", payload=b"\x89PNG fake image"):
    return (io.BytesIO(payload), name)
