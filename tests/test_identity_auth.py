from __future__ import annotations

from fastapi.testclient import TestClient


def _client() -> TestClient:
    from statement_converter.main import app

    return TestClient(app)


def test_register_login_and_me_round_trip():
    client = _client()

    created = client.post(
        "/api/auth/register",
        json={"email": "Ana@Example.com", "password": "secret-pw", "full_name": "Ana"},
    )
    assert created.status_code == 200
    assert created.json()["email"] == "ana@example.com"

    token_resp = client.post(
        "/api/auth/token", data={"username": "ana@example.com", "password": "secret-pw"}
    )
    assert token_resp.status_code == 200
    token = token_resp.json()["access_token"]
    assert token_resp.json()["token_type"] == "bearer"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["full_name"] == "Ana"


def test_duplicate_registration_conflicts():
    client = _client()
    payload = {"email": "bo@example.com", "password": "secret-pw"}
    assert client.post("/api/auth/register", json=payload).status_code == 200
    assert client.post("/api/auth/register", json=payload).status_code == 409


def test_wrong_password_is_rejected():
    client = _client()
    client.post("/api/auth/register", json={"email": "cy@example.com", "password": "secret-pw"})
    resp = client.post("/api/auth/token", data={"username": "cy@example.com", "password": "nope"})
    assert resp.status_code == 401


def test_me_requires_valid_token():
    client = _client()
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_token_for_inactive_user_is_ignored_for_quota_tier():
    from statement_converter.core.db import SessionLocal
    from statement_converter.core.security import create_access_token
    from statement_converter.modules.identity.service import create_user, resolve_token_user

    with SessionLocal() as session:
        user = create_user(session, email="dee@example.com", password="secret-pw")
        token = create_access_token(subject=str(user.id))
        assert resolve_token_user(session, token=token).id == user.id

        user.is_active = False
        session.commit()
        assert resolve_token_user(session, token=token) is None
