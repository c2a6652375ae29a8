from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from glovebrand.db.models import QueueMessage
from glovebrand.db.repositories.base import Repository

DEAD_LETTER_REASON_MAX_DELIVERY = "MaxDeliveryCountExceeded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueMessagesRepository(Repository):
    """
    At-least-once job queue stored next to the job records.

    A received message stays invisible for ``visibility_timeout_seconds`` and comes
    back if it is neither completed nor abandoned. A message received more than
    ``max_delivery_count`` times is moved to the dead-letter side instead of
    being delivered again.
    """

    def __init__(
        self,
        session: Session,
        *,
        queue_name: str,
        max_delivery_count: int = 5,
        visibility_timeout_seconds: int = 300,
    ) -> None:
        super().__init__(session)
        self.queue_name = queue_name
        self.max_delivery_count = max(1, int(max_delivery_count))
        self.visibility_timeout = timedelta(seconds=max(1, int(visibility_timeout_seconds)))

    def send(self, body: dict[str, Any], *, now: Optional[datetime] = None) -> QueueMessage:
        now = now or _utcnow()
        message = QueueMessage(
            queue_name=self.queue_name,
            body=dict(body),
            content_type="application/json",
            delivery_count=0,
            enqueued_at=now,
            visible_at=now,
            dead_lettered=False,
        )
        return self.save(message)

    def receive(self, max_messages: int = 10, *, now: Optional[datetime] = None) -> list[QueueMessage]:
        now = now or _utcnow()
        stmt = (
            select(QueueMessage)
            .where(
                QueueMessage.queue_name == self.queue_name,
                QueueMessage.dead_lettered.is_(False),
                QueueMessage.visible_at <= now,
            )
            .order_by(QueueMessage.enqueued_at.asc())
            .limit(max(1, int(max_messages)))
            .with_for_update(skip_locked=True)
        )
        delivered: list[QueueMessage] = []
        for message in self.session.scalars(stmt).all():
            if message.delivery_count >= self.max_delivery_count:
                message.dead_lettered = True
                message.dead_lettered_at = now
                message.dead_letter_reason = DEAD_LETTER_REASON_MAX_DELIVERY
                continue
            message.delivery_count += 1
            message.visible_at = now + self.visibility_timeout
            delivered.append(message)
        return self.commit_all(delivered)

    def complete(self, message_id: str) -> bool:
        stmt = delete(QueueMessage).where(QueueMessage.id == message_id)
        result = self.session.execute(stmt)
        self.session.commit()
        return bool(result.rowcount)

    def abandon(self, message_id: str, *, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        stmt = update(QueueMessage).where(QueueMessage.id == message_id).values(visible_at=now)
        result = self.session.execute(stmt)
        self.session.commit()
        return bool(result.rowcount)

    def dead_letter(self, message_id: str, *, reason: str, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        stmt = (
            update(QueueMessage)
            .where(QueueMessage.id == message_id)
            .values(dead_lettered=True, dead_lettered_at=now, dead_letter_reason=reason[:1000])
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return bool(result.rowcount)

    def depth(self) -> dict[str, int]:
        stmt = (
            select(QueueMessage.dead_lettered, func.count())
            .where(QueueMessage.queue_name == self.queue_name)
            .group_by(QueueMessage.dead_lettered)
        )
        counts = {"active": 0, "dead_letter": 0}
        for dead_lettered, count in self.session.execute(stmt).all():
            counts["dead_letter" if dead_lettered else "active"] = int(count)
        return counts

    def peek_dead_letters(self, limit: int = 5) -> list[QueueMessage]:
        stmt = (
            select(QueueMessage)
            .where(QueueMessage.queue_name == self.queue_name, QueueMessage.dead_lettered.is_(True))
            .order_by(QueueMessage.dead_lettered_at.asc())
            .limit(max(1, int(limit)))
        )
        return list(self.session.scalars(stmt).all())

    def requeue_dead_letters(self, limit: int = 1, *, now: Optional[datetime] = None) -> list[QueueMessage]:
        """Move up to ``limit`` dead-lettered messages back to the active queue."""
        now = now or _utcnow()
        moved = self.peek_dead_letters(limit)
        for message in moved:
            message.dead_lettered = False
            message.dead_lettered_at = None
            message.dead_letter_reason = None
            message.delivery_count = 0
            message.visible_at = now
        return self.commit_all(moved)


def queue_from_settings(session: Session, settings: Any) -> Optional[QueueMessagesRepository]:
    """The job queue for ``session``, or None when the queue is disabled."""
    if not settings.JOB_QUEUE_ENABLED:
        return None
    return QueueMessagesRepository(
        session,
        queue_name=settings.JOB_QUEUE_NAME,
        max_delivery_count=settings.JOB_QUEUE_MAX_DELIVERY_COUNT,
        visibility_timeout_seconds=settings.JOB_QUEUE_VISIBILITY_TIMEOUT_SECONDS,
    )
