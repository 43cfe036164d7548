from __future__ import annotations

from fastapi import HTTPException
from fastapi.testclient import TestClient

from app.core.security import CurrentUser, get_current_user
from app.main import app

_VALID_SUBSCRIPTION = {"endpoint": "https://fcm.googleapis.com/fcm/send/abc", "expirationTime": None, "keys": {"p256dh": "BEl6f5Y8X5Y_u7d8mV_AbpZfXfTLT3s1O3L4wM1x8QY2_5qWQ-jxJq7uKjv8mQ4I", "auth": "gq8Yh5xA9l2mQ6pR"}}


def test_subscribe_requires_auth():
  client = TestClient(app)
  response = client.post("/v1/push/subscribe", json=_VALID_SUBSCRIPTION)
  assert response.status_code == 401


def test_subscribe_rejected_for_invalid_token_override():
  def _invalid_token():
    raise HTTPException(status_code=401, detail="Invalid authentication credentials")

  app.dependency_overrides[get_current_user] = _invalid_token
  client = TestClient(app)

  try:
    response = client.post("/v1/push/subscribe", json=_VALID_SUBSCRIPTION)
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid authentication credentials"
  finally:
    app.dependency_overrides.clear()


def test_subscribe_and_unsubscribe_happy_path(monkeypatch):
  calls: dict[str, object] = {}

  class _RepoStub:
    async def upsert(self, entry):
      calls["upsert"] = entry

    async def delete_for_user_endpoint(self, *, user_id, endpoint):
      calls["delete"] = (user_id, endpoint)

  monkeypatch.setattr("app.api.routes.push.PushSubscriptionRepository", lambda: _RepoStub())
  app.dependency_overrides[get_current_user] = lambda: CurrentUser(uid="uid-1", email="ok@example.com")
  client = TestClient(app)

  try:
    subscribe_response = client.post("/v1/push/subscribe", json=_VALID_SUBSCRIPTION, headers={"User-Agent": "pytest-browser"})
    assert subscribe_response.status_code == 204
    assert calls["upsert"].user_id == "uid-1"
    assert calls["upsert"].user_agent == "pytest-browser"

    unsubscribe_response = client.request("DELETE", "/v1/push/unsubscribe", json={"endpoint": _VALID_SUBSCRIPTION["endpoint"]})
    assert unsubscribe_response.status_code == 204
    assert calls["delete"] == ("uid-1", _VALID_SUBSCRIPTION["endpoint"])
  finally:
    app.dependency_overrides.clear()


def test_subscribe_storage_failure_is_a_500(monkeypatch):
  class _BrokenRepo:
    async def upsert(self, entry):
      raise RuntimeError("db down")

  monkeypatch.setattr("app.api.routes.push.PushSubscriptionRepository", lambda: _BrokenRepo())
  app.dependency_overrides[get_current_user] = lambda: CurrentUser(uid="uid-1")
  client = TestClient(app)

  try:
    response = client.post("/v1/push/subscribe", json=_VALID_SUBSCRIPTION)
    assert response.status_code == 500
    assert response.json()["detail"] == "Internal Server Error"
  finally:
    app.dependency_overrides.clear()
