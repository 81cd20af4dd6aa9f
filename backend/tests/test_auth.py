import os
import sys
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient
from slowapi.errors import RateLimitExceeded

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.main import http_exception_handler
from app.routers import auth
from app.routers.admin import require_admin

app = FastAPI()
app.state.limiter = auth.limiter
app.add_exception_handler(RateLimitExceeded, auth.rate_limit_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.include_router(auth.router)


@app.post("/protected/score")
async def score(caller: auth.Caller = Depends(auth.require_scorer)):
    return {"role": caller.role}


@app.post("/protected/admin")
async def admin_only(caller: auth.Caller = Depends(require_admin)):
    return {"role": caller.role}


@pytest.fixture(autouse=True)
def role_codes(monkeypatch):
    monkeypatch.setenv("ADMIN_CODE", "admin-code-123")
    monkeypatch.setenv("SCORER_CODE", "scorer-code-456")
    auth.limiter.reset()
    yield


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_login_exchanges_code_for_role_token():
    with TestClient(app) as client:
        resp = client.post("/auth/login", json={"code": "scorer-code-456"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["role"] == "scorer"
        assert data["token_type"] == "bearer"
        payload = jwt.decode(data["access_token"], "x" * 32, algorithms=[auth.JWT_ALG])
        assert payload["role"] == "scorer"

        resp = client.get("/auth/me", headers=_bearer(data["access_token"]))
        assert resp.json()["role"] == "scorer"
        assert resp.json()["subject"] == payload["sub"]


def test_login_rejects_unknown_code():
    with TestClient(app) as client:
        resp = client.post("/auth/login", json={"code": "guess"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "auth_invalid_code"


def test_me_without_token_is_anonymous_viewer():
    with TestClient(app) as client:
        resp = client.get("/auth/me")
        assert resp.json() == {"role": "viewer", "subject": "anonymous"}


def test_expired_and_forged_tokens_are_rejected():
    expired = jwt.encode(
        {"sub": "scorer-1", "role": "scorer", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        "x" * 32,
        algorithm=auth.JWT_ALG,
    )
    forged = jwt.encode({"sub": "admin-1", "role": "admin"}, "y" * 32, algorithm=auth.JWT_ALG)
    unknown_role = jwt.encode({"sub": "root", "role": "root"}, "x" * 32, algorithm=auth.JWT_ALG)

    with TestClient(app) as client:
        resp = client.post("/protected/score", headers=_bearer(expired))
        assert resp.status_code == 401
        assert resp.json()["code"] == "auth_token_expired"

        resp = client.post("/protected/score", headers=_bearer(forged))
        assert resp.json()["code"] == "auth_invalid_token"

        resp = client.post("/protected/score", headers=_bearer(unknown_role))
        assert resp.json()["code"] == "auth_invalid_token"


def test_role_requirements():
    scorer, _ = auth.create_token("scorer")
    admin, _ = auth.create_token("admin")
    with TestClient(app) as client:
        resp = client.post("/protected/score")
        assert resp.status_code == 401
        assert resp.json()["code"] == "auth_missing_token"

        assert client.post("/protected/score", headers=_bearer(scorer)).status_code == 200
        assert client.post("/protected/score", headers=_bearer(admin)).status_code == 200

        resp = client.post("/protected/admin", headers=_bearer(scorer))
        assert resp.status_code == 403
        assert resp.json()["code"] == "auth_forbidden"
        assert client.post("/protected/admin", headers=_bearer(admin)).json() == {
            "role": "admin"
        }


def test_create_token_rejects_unknown_role():
    with pytest.raises(ValueError):
        auth.create_token("owner")


def test_weak_jwt_secret_fails_fast(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "changeme")
    with pytest.raises(RuntimeError):
        auth.get_jwt_secret()


def test_login_rate_limited_per_ip(monkeypatch):
    monkeypatch.setenv("DISABLE_AUTH_RATE_LIMITS", "false")
    h1 = {"X-Forwarded-For": "1.1.1.1"}
    h2 = {"X-Forwarded-For": "2.2.2.2"}
    with TestClient(app) as client:
        for _ in range(5):
            ok = client.post("/auth/login", json={"code": "admin-code-123"}, headers=h1)
            assert ok.status_code == 200
        resp = client.post("/auth/login", json={"code": "admin-code-123"}, headers=h1)
        assert resp.status_code == 429
        assert resp.json()["code"] == "rate_limit_exceeded"

        resp = client.post("/auth/login", json={"code": "admin-code-123"}, headers=h2)
        assert resp.status_code == 200
