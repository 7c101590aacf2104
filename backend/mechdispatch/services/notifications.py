import uuid

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mechdispatch.errors import NotFound
from mechdispatch.models.enums import NotificationType
from mechdispatch.models.notification import Notification

logger = structlog.get_logger()


async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    notification_type: NotificationType,
    title: str,
    body: str,
    data: dict | None = None,
) -> Notification:
    """Persist a notification for ``user_id``.

    Clients poll ``GET /notifications``; the record is written inside the
    caller's transaction so it only exists if the state change it reports
    was committed.
    """
    payload = dict(data) if data else {}
    payload.setdefault("type", notification_type.value)

    notification = Notification(
        user_id=user_id,
        type=notification_type.value,
        title=title,
        body=body,
        data=payload,
    )
    db.add(notification)
    await db.flush()
    logger.debug("notification_created", user_id=str(user_id), type=notification_type.value)
    return notification


async def list_for_user(
    db: AsyncSession, user_id: uuid.UUID, limit: int = 20, offset: int = 0, unread_only: bool = False
) -> tuple[list[Notification], int]:
    """A page of ``user_id``'s notifications, newest first, and their total unread count."""
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    result = await db.execute(
        query.order_by(Notification.created_at.desc(), Notification.id).limit(limit).offset(offset)
    )
    unread = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
    )
    return list(result.scalars().all()), unread.scalar_one()


async def mark_read(db: AsyncSession, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
    # Filtering on the owner too keeps other users' ids indistinguishable from missing ones
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFound("Notification not found")

    notification.is_read = True
    await db.flush()
    return notification


async def mark_all_read(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
