"""Repository helpers for Web Push subscription persistence."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert

from app.core.database import get_session_factory
from app.schema.push_subscriptions import WebPushSubscription


@dataclass(frozen=True)
class PushSubscriptionEntry:
  user_id: str
  endpoint: str
  p256dh: str
  auth: str
  user_agent: str | None


class PushSubscriptionRepository:
  """Persist and manage push subscriptions in Postgres."""

  async def upsert(self, entry: PushSubscriptionEntry) -> None:
    """Insert or update a subscription row keyed by endpoint."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      # Upsert by endpoint so a browser refresh rotates keys cleanly.
      stmt = insert(WebPushSubscription).values(user_id=entry.user_id, endpoint=entry.endpoint, p256dh=entry.p256dh, auth=entry.auth, user_agent=entry.user_agent)
      stmt = stmt.on_conflict_do_update(index_elements=["endpoint"], set_={"user_id": entry.user_id, "p256dh": entry.p256dh, "auth": entry.auth, "user_agent": entry.user_agent})
      await session.execute(stmt)
      await session.commit()

  async def delete_for_user_endpoint(self, *, user_id: str, endpoint: str) -> None:
    """Delete one of the user's own subscriptions."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await session.execute(delete(WebPushSubscription).where(WebPushSubscription.user_id == user_id, WebPushSubscription.endpoint == endpoint))
      await session.commit()

  async def list_for_user(self, *, user_id: str) -> list[PushSubscriptionEntry]:
    session_factory = get_session_factory()
    if session_factory is None:
      return []

    async with session_factory() as session:
      rows = (await session.execute(select(WebPushSubscription).where(WebPushSubscription.user_id == user_id))).scalars().all()
      return [PushSubscriptionEntry(user_id=row.user_id, endpoint=row.endpoint, p256dh=row.p256dh, auth=row.auth, user_agent=row.user_agent) for row in rows]

  async def delete_by_endpoint(self, *, endpoint: str) -> None:
    """Remove an endpoint the push service reported as gone."""
    session_factory = get_session_factory()
    if session_factory is None:
      return

    async with session_factory() as session:
      await session.execute(delete(WebPushSubscription).where(WebPushSubscription.endpoint == endpoint))
      await session.commit()
