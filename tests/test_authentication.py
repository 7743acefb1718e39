#!/usr/bin/env python3

from starlette.testclient import TestClient
from starlette.applications import Starlette
from starlette.routing import Route
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth_middleware import AuthMiddleware, DefaultRejectMiddleware, noauth, require_scope
from jwt_auth import create_api_token, generate_jwt_secret, SCOPE_INGEST, SCOPE_STATUS


def build_app(jwt_secret=""):
    @noauth
    async def public_endpoint(request: Request):
        return JSONResponse({"message": "Public endpoint - no auth required"})

    @require_scope(SCOPE_INGEST)
    async def ingest_endpoint(request: Request):
        user = getattr(request.state, "user", None)
        return JSONResponse({"message": "Ingest endpoint", "user": user})

    @require_scope(SCOPE_STATUS)
    async def status_endpoint(request: Request):
        return JSONResponse({"message": "Status endpoint"})

    # This endpoint has no decorator - should be rejected by default
    async def unprotected_endpoint(request: Request):
        return JSONResponse({"message": "This should be rejected"})

    return Starlette(
        routes=[
            Route("/public", public_endpoint, methods=["GET"]),
            Route("/ingest", ingest_endpoint, methods=["POST"]),
            Route("/status", status_endpoint, methods=["GET"]),
            Route("/unprotected", unprotected_endpoint, methods=["GET"]),
        ],
        middleware=[
            Middleware(AuthMiddleware, jwt_secret=jwt_secret),
            Middleware(DefaultRejectMiddleware),
        ],
    )


def test_middleware_with_auth_disabled():
    """Without a secret, scoped endpoints are open and undecorated ones still rejected"""

    client = TestClient(build_app())

    assert client.get("/public").status_code == 200

    response = client.post("/ingest", json={})
    assert response.status_code == 200
    assert response.json()["user"] is None

    assert client.get("/status").status_code == 200

    response = client.get("/unprotected")
    assert response.status_code == 401
    assert "explicit authentication" in response.json()["error"]


def test_middleware_with_auth_enabled():
    """With a secret, scoped endpoints need a token carrying their scope"""

    secret = generate_jwt_secret()
    client = TestClient(build_app(secret))

    # Public endpoint (should work without auth)
    assert client.get("/public").status_code == 200

    # Scoped endpoint without auth (should fail)
    response = client.post("/ingest", json={})
    assert response.status_code == 401
    assert response.json()["error"] == "Authentication required"

    # Scoped endpoint with a matching token (should work)
    token = create_api_token(secret, [SCOPE_INGEST], expires_in_days=1, name="collector")
    response = client.post("/ingest", json={}, headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    user = response.json()["user"]
    assert user["scope"] == "ingest"
    assert user["name"] == "collector"

    # Same token on an endpoint needing another scope (should be forbidden)
    response = client.get("/status", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403

    # Token carrying every scope
    token = create_api_token(secret, expires_in_days=1)
    headers = {"Authorization": f"Bearer {token}"}
    assert client.post("/ingest", json={}, headers=headers).status_code == 200
    assert client.get("/status", headers=headers).status_code == 200

    # Unprotected endpoint (should fail due to default reject)
    assert client.get("/unprotected", headers=headers).status_code == 401


def test_malformed_authorization_headers():
    """Invalid, unprefixed and foreign tokens are all rejected with 401"""
    secret = generate_jwt_secret()
    token = create_api_token(secret, expires_in_days=1)
    client = TestClient(build_app(secret))

    response = client.post("/ingest", json={}, headers={"Authorization": "Bearer invalid.jwt.token"})
    assert response.status_code == 401
    assert "Invalid token" in response.json()["error"]

    # Token without the Bearer prefix
    response = client.post("/ingest", json={}, headers={"Authorization": token})
    assert response.status_code == 401

    # Token signed with another secret
    other = create_api_token(generate_jwt_secret(), expires_in_days=1)
    response = client.post("/ingest", json={}, headers={"Authorization": f"Bearer {other}"})
    assert response.status_code == 401


def test_secret_generation():
    """Generated secrets are prefixed and safe to put in an environment variable"""

    secrets = [generate_jwt_secret() for _ in range(10)]
    problematic_chars = ["/", "+", "=", '"', "'", " ", "\n", "\t", "\\"]

    for secret in secrets:
        assert secret.startswith("sk_")
        assert not any(char in secret[3:] for char in problematic_chars)

    lengths = [len(secret) for secret in secrets]
    assert all(length == lengths[0] for length in lengths), "Inconsistent secret lengths"
    assert len(set(secrets)) == len(secrets)
