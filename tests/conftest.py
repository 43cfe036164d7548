"""Test configuration shared by unit and integration suites."""

from __future__ import annotations

import os

# app.main reads settings at import time.
os.environ.setdefault("RELAY_ALLOWED_ORIGINS", "http://localhost:3000")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.api.deps import get_generation_store  # noqa: E402
from app.config import get_settings  # noqa: E402
from app.core.security import CurrentUser, get_current_user  # noqa: E402
from app.main import app  # noqa: E402
from app.notifications.factory import get_broadcaster  # noqa: E402
from app.providers.registry import ProviderRegistry, get_provider_registry  # noqa: E402
from tests.support import FakeProviderAdapter, InMemoryGenerationStore, RecordingBroadcaster, make_settings  # noqa: E402


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def settings():
  return make_settings()


@pytest.fixture
def store():
  store = InMemoryGenerationStore()
  store.set_balance("user-1", available=100)
  return store


@pytest.fixture
def adapter():
  return FakeProviderAdapter()


@pytest.fixture
def providers(adapter):
  return ProviderRegistry([adapter])


@pytest.fixture
def broadcaster():
  return RecordingBroadcaster()


@pytest.fixture
def override_dependencies(store, providers, broadcaster, settings):
  app.dependency_overrides[get_current_user] = lambda: CurrentUser(uid="user-1", email="maker@example.com")
  app.dependency_overrides[get_generation_store] = lambda: store
  app.dependency_overrides[get_provider_registry] = lambda: providers
  app.dependency_overrides[get_broadcaster] = lambda: broadcaster
  app.dependency_overrides[get_settings] = lambda: settings
  yield
  app.dependency_overrides.clear()


@pytest.fixture
async def async_client(override_dependencies):
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
