"""Lookup of provider adapters by key."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from functools import lru_cache

from app.config import Settings, get_settings
from app.core.errors import JobValidationError
from app.providers.base import ProviderAdapter
from app.providers.fal import FalQueueAdapter
from app.providers.replicate import ReplicateAdapter

logger = logging.getLogger(__name__)


class ProviderRegistry:
  def __init__(self, adapters: Iterable[ProviderAdapter] = ()) -> None:
    self._adapters: dict[str, ProviderAdapter] = {}
    for adapter in adapters:
      self.register(adapter)

  def register(self, adapter: ProviderAdapter) -> None:
    self._adapters[adapter.name] = adapter

  def names(self) -> list[str]:
    return sorted(self._adapters)

  def get(self, name: str) -> ProviderAdapter:
    adapter = self._adapters.get(name)
    if adapter is None:
      raise JobValidationError(f"unknown provider: {name}")
    return adapter

  def for_tool(self, name: str, tool_id: str) -> ProviderAdapter:
    """Return the adapter only when it can run the tool."""
    adapter = self.get(name)
    if not adapter.supports_tool(tool_id):
      raise JobValidationError(f"provider {name} does not support {tool_id}")
    return adapter


def build_provider_registry(settings: Settings) -> ProviderRegistry:
  """Register adapters whose credentials are configured."""
  registry = ProviderRegistry()
  if settings.replicate_api_token:
    registry.register(ReplicateAdapter(api_token=settings.replicate_api_token, models=settings.replicate_models, base_url=settings.replicate_base_url, timeout_seconds=settings.provider_timeout_seconds))
  if settings.fal_api_key:
    registry.register(FalQueueAdapter(api_key=settings.fal_api_key, apps=settings.fal_apps, base_url=settings.fal_queue_base_url, timeout_seconds=settings.provider_timeout_seconds))
  if not registry.names():
    logger.warning("No generation providers configured; submissions will be rejected.")
  return registry


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
  """FastAPI dependency returning the process-wide registry."""
  return build_provider_registry(get_settings())
