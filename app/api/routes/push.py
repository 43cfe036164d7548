"""Routes for registering browsers that should receive job completion pushes."""

from __future__ import annotations

import re
import urllib.parse

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from app.core.security import CurrentUser, get_current_user
from app.notifications.push_subscription_repo import PushSubscriptionEntry, PushSubscriptionRepository

_ALLOWED_PUSH_HOSTS = {"fcm.googleapis.com", "updates.push.services.mozilla.com", "push.services.mozilla.com", "web.push.apple.com"}
_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")

router = APIRouter()


def _validate_push_endpoint(value: str) -> str:
  """Only accept HTTPS endpoints on known push services."""
  normalized = value.strip()
  parsed = urllib.parse.urlparse(normalized)
  if parsed.scheme.lower() != "https":
    raise PydanticCustomError("push_endpoint_https", "endpoint must use https.")

  if (parsed.hostname or "").lower() not in _ALLOWED_PUSH_HOSTS:
    raise PydanticCustomError("push_endpoint_host", "endpoint host is not allowed.")

  return normalized


class PushSubscriptionKeys(BaseModel):
  """Browser-provided key material for Web Push encryption."""

  p256dh: str = Field(min_length=40, max_length=512)
  auth: str = Field(min_length=16, max_length=256)
  model_config = ConfigDict(extra="forbid")

  @field_validator("p256dh", "auth")
  @classmethod
  def validate_key(cls, value: str) -> str:
    normalized = value.strip()
    if not _BASE64URL_RE.fullmatch(normalized):
      raise PydanticCustomError("push_key_format", "push keys must be base64url encoded.")
    return normalized


class PushSubscribeRequest(BaseModel):
  """Standard browser push subscription object payload."""

  endpoint: str = Field(min_length=1, max_length=2048)
  expiration_time: int | None = Field(default=None, alias="expirationTime")
  keys: PushSubscriptionKeys
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    return _validate_push_endpoint(value)


class PushUnsubscribeRequest(BaseModel):
  endpoint: str = Field(min_length=1, max_length=2048)
  model_config = ConfigDict(extra="forbid")

  @field_validator("endpoint")
  @classmethod
  def validate_endpoint(cls, value: str) -> str:
    return _validate_push_endpoint(value)


@router.post("/subscribe", status_code=status.HTTP_204_NO_CONTENT)
async def subscribe_to_push(payload: PushSubscribeRequest, response: Response, current_user: CurrentUser = Depends(get_current_user), user_agent: str | None = Header(default=None)) -> Response:  # noqa: B008
  """Upsert the caller's browser subscription so terminal job updates reach it."""
  # Clamp user agent size to reduce storage abuse while keeping device context.
  normalized_user_agent = (user_agent or "").strip()[:512] or None

  try:
    await PushSubscriptionRepository().upsert(PushSubscriptionEntry(user_id=current_user.uid, endpoint=payload.endpoint, p256dh=payload.keys.p256dh, auth=payload.keys.auth, user_agent=normalized_user_agent))
  except Exception as exc:  # noqa: BLE001
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save push subscription") from exc

  response.status_code = status.HTTP_204_NO_CONTENT
  return response


@router.delete("/unsubscribe", status_code=status.HTTP_204_NO_CONTENT)
async def unsubscribe_from_push(payload: PushUnsubscribeRequest, response: Response, current_user: CurrentUser = Depends(get_current_user)) -> Response:  # noqa: B008
  """Delete one of the caller's subscriptions; unknown endpoints are a no-op."""
  try:
    await PushSubscriptionRepository().delete_for_user_endpoint(user_id=current_user.uid, endpoint=payload.endpoint)
  except Exception as exc:  # noqa: BLE001
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to delete push subscription") from exc

  response.status_code = status.HTTP_204_NO_CONTENT
  return response
