"""Bearer token checks on protected routes.

Tokens come from the identity provider; the API only verifies the HS256
signature and expiry and reads sub/roles/name from the claims.
"""

from __future__ import annotations

import time

import jwt
from fastapi.testclient import TestClient

from studyforge.core.config import SETTINGS
from tests.conftest import auth, mint_token, provision


def test_missing_token_is_401(client: TestClient) -> None:
    resp = client.get("/v1/credits")
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"


def test_garbage_token_is_401(client: TestClient) -> None:
    resp = client.get("/v1/credits", headers=auth("total-garbage"))
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


def test_expired_token_is_401(client: TestClient) -> None:
    resp = client.get("/v1/credits", headers=auth(mint_token(expires_in=-60)))
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


def test_token_signed_with_another_secret_is_401(client: TestClient) -> None:
    forged = jwt.encode(
        {"sub": "student@example.com", "exp": int(time.time()) + 60},
        "not-" + SETTINGS.jwt_secret,
        algorithm="HS256",
    )
    assert client.get("/v1/credits", headers=auth(forged)).status_code == 401


def test_token_without_expiry_is_401(client: TestClient) -> None:
    no_exp = jwt.encode({"sub": "student@example.com"}, SETTINGS.jwt_secret, algorithm="HS256")
    assert client.get("/v1/credits", headers=auth(no_exp)).status_code == 401


def test_subject_is_matched_case_insensitively(client: TestClient, pipeline) -> None:
    provision(pipeline, "student@example.com")
    resp = client.get("/v1/users/me", headers=auth(mint_token("Student@Example.COM")))
    assert resp.status_code == 200
    assert resp.json()["email"] == "student@example.com"


def test_admin_route_requires_admin_role(client: TestClient, token: str) -> None:
    resp = client.post("/v1/admin/courses/due-dates", headers=auth(token))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Insufficient permissions"


def test_admin_route_accepts_admin(client: TestClient, admin_token: str) -> None:
    resp = client.post("/v1/admin/courses/due-dates", headers=auth(admin_token))
    assert resp.status_code == 200
    assert resp.json()["updated"] == 0
