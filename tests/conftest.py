import pytest
from werkzeug.security import generate_password_hash

from app.qa import create_app
from app.qa.auth import _login_attempts
from app.qa.db import session_scope
from app.qa.models import Base, User

CSRF_TOKEN = "test-csrf-token"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in ("QUESTIONS_PER_PAGE", "ANSWERS_PER_PAGE"):
        monkeypatch.delenv(k, raising=False)
    _login_attempts.clear()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def users(app):
    """Three active users; returns {"u1": id, "u2": id, "u3": id}."""
    ids = {}
    with session_scope(app) as s:
        for name in ("u1", "u2", "u3"):
            u = User(
                email=f"{name}@example.com",
                username=name,
                password_hash=generate_password_hash("pw"),
                is_active=True,
            )
            s.add(u)
            s.flush()
            ids[name] = u.id
    return ids


@pytest.fixture()
def client(app, users):
    return app.test_client()


@pytest.fixture()
def login(client):
    """login("u1") signs the test client in and primes a known CSRF token."""

    def _login(name: str) -> None:
        r = client.post("/auth/login", data={"email": f"{name}@example.com", "password": "pw"}, follow_redirects=False)
        assert r.status_code == 302
        with client.session_transaction() as sess:
            sess["csrf_token"] = CSRF_TOKEN

    return _login


@pytest.fixture()
def csrf():
    return {"X-CSRF-Token": CSRF_TOKEN}
