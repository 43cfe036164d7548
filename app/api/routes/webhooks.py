"""Provider completion callbacks."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.api.deps import get_generation_store
from app.api.models import WebhookAck
from app.api.msgspec_utils import decode_json_request
from app.config import Settings, get_settings
from app.core.errors import JobValidationError
from app.notifications.factory import get_broadcaster
from app.notifications.service import JobUpdateBroadcaster
from app.providers.base import WebhookPayloadError
from app.providers.registry import ProviderRegistry, get_provider_registry
from app.services.webhooks import handle_provider_event, verify_webhook_token
from app.storage.generation_repo import GenerationStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{provider}", response_model=WebhookAck)
async def receive_provider_webhook(
  provider: str,
  request: Request,
  token: str | None = Query(default=None),
  settings: Settings = Depends(get_settings),  # noqa: B008
  providers: ProviderRegistry = Depends(get_provider_registry),  # noqa: B008
  store: GenerationStore = Depends(get_generation_store),  # noqa: B008
  broadcaster: JobUpdateBroadcaster = Depends(get_broadcaster),  # noqa: B008
) -> WebhookAck:
  """Accept a provider event; unknown and duplicate events are acknowledged with 200."""
  verify_webhook_token(settings, token)

  try:
    adapter = providers.get(provider)
  except JobValidationError as exc:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown provider") from exc

  payload = await decode_json_request(request)
  try:
    event = adapter.parse_event(payload, request.headers)
  except WebhookPayloadError as exc:
    logger.warning("Unparseable webhook provider=%s error=%s", provider, exc)
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid webhook payload: {exc}") from exc

  outcome = await handle_provider_event(store, broadcaster, settings, provider=provider, event=event)
  return WebhookAck(outcome=outcome)
