from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Annotated

from app.config import Settings, get_settings
from app.core.firebase import verify_id_token
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

security_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
  """Authenticated caller resolved from a verified Firebase ID token."""

  uid: str
  email: str | None = None


async def get_current_user(token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)]) -> CurrentUser:
  """Verify the bearer token; every job and credit query is scoped to the returned uid."""
  if token is None or not token.credentials:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"})

  # Verification hits Google certs on a cold cache, so keep it off the event loop.
  decoded_claims = await run_in_threadpool(verify_id_token, token.credentials)
  if not decoded_claims:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials", headers={"WWW-Authenticate": "Bearer"})

  firebase_uid = decoded_claims.get("uid")
  if not firebase_uid:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token claims")

  email = decoded_claims.get("email")
  return CurrentUser(uid=str(firebase_uid), email=str(email) if email else None)


def require_task_secret(x_relay_task_secret: str | None = Header(default=None), settings: Settings = Depends(get_settings)) -> None:  # noqa: B008
  """Guard internal routes called by schedulers and operators."""
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Internal routes are disabled")

  if not x_relay_task_secret or not hmac.compare_digest(x_relay_task_secret, settings.task_secret):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret")
