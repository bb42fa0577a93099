from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lessonai.ai.orchestrator import OrchestrationError
from lessonai.config import get_settings

security_scheme = HTTPBearer(auto_error=False)

# Tolerated clock skew when checking exp/nbf.
LEEWAY_SECONDS = 30

# Three unpadded base64url segments; the decoder would otherwise skip stray characters.
TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")


class CallerTokenError(ValueError):
  """The bearer token is malformed, forged or expired."""


@dataclass(frozen=True)
class CallerIdentity:
  """The authenticated portal user behind a request."""

  user_id: str
  role: str | None = None
  claims: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


def verify_caller_token(token: str, secret: str) -> dict[str, Any]:
  """Verify an HS256 token issued by the portal's auth provider and return its claims."""
  if not TOKEN_PATTERN.fullmatch(token):
    raise CallerTokenError("Token must be three base64url segments.")

  try:
    claims = jwt.decode(token, secret, algorithms=["HS256"], leeway=LEEWAY_SECONDS, options={"require": ["exp", "sub"]})
  except jwt.ExpiredSignatureError as exc:
    raise CallerTokenError("Token has expired.") from exc
  except jwt.ImmatureSignatureError as exc:
    raise CallerTokenError("Token is not valid yet.") from exc
  except jwt.InvalidSignatureError as exc:
    raise CallerTokenError("Token signature mismatch.") from exc
  except jwt.InvalidAlgorithmError as exc:
    raise CallerTokenError("Unsupported token algorithm.") from exc
  except jwt.MissingRequiredClaimError as exc:
    raise CallerTokenError("Token has no subject." if exc.claim == "sub" else "Token has no expiry.") from exc
  except jwt.PyJWTError as exc:
    raise CallerTokenError(f"Token is malformed: {exc}") from exc

  subject = claims.get("sub")
  if not isinstance(subject, str) or not subject.strip():
    raise CallerTokenError("Token has no subject.")
  return claims

def _unauthorized(detail: str) -> HTTPException:
  return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def get_current_caller(credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)]) -> CallerIdentity:
  """Resolve the caller from the bearer token or reject the request with 401."""
  if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
    raise _unauthorized("Missing authorization header")

  secret = get_settings().auth_jwt_secret
  if not secret:
    raise OrchestrationError("Server misconfigured: LESSONAI_AUTH_JWT_SECRET is not set.", status_code=500, reason="configuration_error")

  try:
    claims = verify_caller_token(credentials.credentials, secret)
  except CallerTokenError as exc:
    raise _unauthorized(f"Invalid authentication credentials: {exc}") from exc

  role = claims.get("user_role") or claims.get("role")
  return CallerIdentity(user_id=claims["sub"].strip(), role=str(role) if role else None, claims=claims)


CurrentCaller = Annotated[CallerIdentity, Depends(get_current_caller)]
