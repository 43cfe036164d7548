"""Generation provider adapters."""

from .base import ProviderAdapter, ProviderEvent, ProviderStatus, ProviderSubmission, WebhookPayloadError
from .registry import ProviderRegistry, build_provider_registry, get_provider_registry

__all__ = ["ProviderAdapter", "ProviderEvent", "ProviderRegistry", "ProviderStatus", "ProviderSubmission", "WebhookPayloadError", "build_provider_registry", "get_provider_registry"]
