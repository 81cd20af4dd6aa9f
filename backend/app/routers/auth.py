import os
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import jwt
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from ..config import get_role_codes
from ..schemas import LoginIn, TokenOut, CallerOut
from ..exceptions import http_problem


def get_jwt_secret() -> str:
  secret = os.getenv("JWT_SECRET")
  if not secret:
    raise RuntimeError("JWT_SECRET environment variable is required")
  if len(secret) < 32 or secret.lower() in {"secret", "changeme", "default"}:
    raise RuntimeError(
        "JWT_SECRET must be at least 32 characters and not a common default"
    )
  return secret


JWT_ALG = "HS256"
JWT_EXPIRE_SECONDS = 12 * 3600
ROLES = ("admin", "scorer", "viewer")


@dataclass(frozen=True)
class Caller:
  """Identity the scoring routes act on behalf of."""

  role: str
  subject: str

  def has_role(self, *roles: str) -> bool:
    return self.role in roles


def _rate_limits_disabled() -> bool:
  return (os.getenv("DISABLE_AUTH_RATE_LIMITS") or "").lower() == "true"


def _get_client_ip(request: Request) -> str:
  forwarded = request.headers.get("X-Forwarded-For")
  if forwarded:
    parts = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
    if parts:
      return parts[-1]
  real_ip = request.headers.get("X-Real-IP")
  if real_ip:
    return real_ip
  return request.client.host if request.client else ""


limiter = Limiter(key_func=_get_client_ip)
router = APIRouter(prefix="/auth", tags=["auth"])


def login_rate_limit() -> str:
  if _rate_limits_disabled():
    return "1000/second"
  return "5/minute"


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
  detail = exc.detail if isinstance(exc.detail, str) else ""
  if detail:
    message = f"rate limit exceeded: {detail}"
  else:
    message = "rate limit exceeded: please wait before submitting another request."
  return JSONResponse(
      status_code=429,
      content={
          "detail": message,
          "code": "rate_limit_exceeded",
      },
  )


def _utcnow() -> datetime:
  return datetime.now(timezone.utc)


def create_token(role: str) -> tuple[str, datetime]:
  if role not in ROLES:
    raise ValueError(f"unknown role '{role}'")
  expires_at = _utcnow() + timedelta(seconds=JWT_EXPIRE_SECONDS)
  payload = {
      "sub": f"{role}-{uuid.uuid4().hex[:12]}",
      "role": role,
      "exp": expires_at,
  }
  return jwt.encode(payload, get_jwt_secret(), algorithm=JWT_ALG), expires_at


def _role_for_code(code: str) -> str | None:
  for known, role in get_role_codes().items():
    if secrets.compare_digest(known.encode("utf-8"), code.encode("utf-8")):
      return role
  return None


def _extract_bearer_token(authorization: str | None) -> str | None:
  if authorization and authorization.lower().startswith("bearer "):
    return authorization.split(" ", 1)[1].strip() or None
  return None


def _decode(token: str) -> dict[str, Any]:
  try:
    return jwt.decode(token, get_jwt_secret(), algorithms=[JWT_ALG])
  except jwt.ExpiredSignatureError:
    raise http_problem(
        status_code=401,
        detail="token expired",
        code="auth_token_expired",
    )
  except jwt.PyJWTError:
    raise http_problem(
        status_code=401,
        detail="invalid token",
        code="auth_invalid_token",
    )


async def get_caller(authorization: str | None = Header(None)) -> Caller:
  """Resolve the caller; requests without a token are anonymous viewers."""

  token = _extract_bearer_token(authorization)
  if token is None:
    return Caller(role="viewer", subject="anonymous")
  payload = _decode(token)
  role = payload.get("role")
  if role not in ROLES:
    raise http_problem(
        status_code=401,
        detail="invalid token",
        code="auth_invalid_token",
    )
  return Caller(role=role, subject=str(payload.get("sub") or role))


def require_roles(*roles: str) -> Callable[..., Any]:
  async def dependency(caller: Caller = Depends(get_caller)) -> Caller:
    if caller.role == "viewer" and "viewer" not in roles:
      raise http_problem(
          status_code=401,
          detail="authentication required",
          code="auth_missing_token",
      )
    if not caller.has_role(*roles):
      raise http_problem(
          status_code=403,
          detail="insufficient permissions",
          code="auth_forbidden",
      )
    return caller

  return dependency


require_scorer = require_roles("admin", "scorer")


@router.post("/login", response_model=TokenOut)
@limiter.limit(login_rate_limit)
async def login(request: Request, body: LoginIn):
  role = _role_for_code(body.code)
  if role is None:
    raise http_problem(
        status_code=401,
        detail="invalid code",
        code="auth_invalid_code",
    )
  token, expires_at = create_token(role)
  return TokenOut(access_token=token, role=role, expiresAt=expires_at)


@router.get("/me", response_model=CallerOut)
async def read_me(caller: Caller = Depends(get_caller)):
  return CallerOut(role=caller.role, subject=caller.subject)
