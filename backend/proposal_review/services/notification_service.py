"""Fire-and-forget notifications.

Services call :meth:`NotificationOutbox.notify` while a request is in
flight; the outbox only buffers the event.  After the request transaction
has committed, ``deps.get_db`` calls :meth:`NotificationOutbox.flush`,
which hands each event to the configured sink.  A sink failure is logged
and swallowed: it can neither roll back nor fail the state change that
produced the notification.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from proposal_review.database import Database
from proposal_review.errors import NotFound
from proposal_review.helpers.clock import Clock, utcnow
from proposal_review.models.db.notification import Notification
from proposal_review.models.enums import NotificationKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    user_id: uuid.UUID
    kind: NotificationKind
    title: str
    message: str
    related_proposal_id: Optional[uuid.UUID] = None
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    async def deliver(self, event: NotificationEvent) -> None: ...


class NotificationOutbox:
    """Per-request buffer of notification events."""

    def __init__(self, sink: Optional[NotificationSink]):
        self._sink = sink
        self._pending: list[NotificationEvent] = []

    @property
    def pending(self) -> tuple[NotificationEvent, ...]:
        return tuple(self._pending)

    def notify(
        self,
        user_id: uuid.UUID,
        kind: NotificationKind,
        title: str,
        message: str,
        *,
        related_proposal_id: Optional[uuid.UUID] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        """Queue an event; never raises."""
        self._pending.append(
            NotificationEvent(
                user_id=user_id,
                kind=kind,
                title=title,
                message=message,
                related_proposal_id=related_proposal_id,
                payload=payload or {},
            )
        )

    def discard(self) -> None:
        """Drop queued events (the originating transaction rolled back)."""
        if self._pending:
            logger.debug("Discarding %d notification(s)", len(self._pending))
        self._pending.clear()

    async def flush(self) -> int:
        """Deliver queued events. Returns the number delivered successfully."""
        events, self._pending = self._pending, []
        if self._sink is None:
            return 0
        delivered = 0
        for event in events:
            try:
                await self._sink.deliver(event)
                delivered += 1
            except Exception:
                logger.warning(
                    "Failed to deliver %s notification to user %s",
                    event.kind.value,
                    event.user_id,
                    exc_info=True,
                )
        return delivered


class DatabaseNotificationSink:
    """Default sink: one ``notifications`` row per event, in its own session."""

    def __init__(self, database: Database, clock: Clock = utcnow):
        self.database = database
        self.clock = clock

    async def deliver(self, event: NotificationEvent) -> None:
        async with self.database.session() as session:
            session.add(
                Notification(
                    user_id=event.user_id,
                    kind=event.kind,
                    title=event.title,
                    message=event.message,
                    payload=_jsonable(event.payload),
                    related_proposal_id=event.related_proposal_id,
                    is_read=False,
                    created_at=self.clock(),
                )
            )


def _jsonable(payload: dict[str, Any]) -> dict[str, Any]:
    return {k: (str(v) if isinstance(v, uuid.UUID) else v) for k, v in payload.items()}


# ---------------------------------------------------------------------------
# Reads for the notifications router
# ---------------------------------------------------------------------------


async def list_for_user(
    db: AsyncSession, user_id: uuid.UUID, unread_only: bool = False
) -> list[Notification]:
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    result = await db.execute(stmt.order_by(Notification.created_at.desc()))
    return list(result.scalars().all())


async def mark_read(
    db: AsyncSession, notification_id: uuid.UUID, user_id: uuid.UUID
) -> Notification:
    """Mark one of the caller's notifications read.

    Another user's notification is reported as not found.
    """
    notification = await db.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFound("Notification", notification_id)
    notification.is_read = True
    await db.flush()
    return notification


async def mark_all_read(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    return result.rowcount or 0
