import uuid

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mechdispatch.database import get_db
from mechdispatch.dependencies import get_current_user
from mechdispatch.models.user import User
from mechdispatch.schemas.common import ApiResponse
from mechdispatch.schemas.notification import NotificationInbox, NotificationResponse, ReadAllResult
from mechdispatch.services import notifications as inbox
from mechdispatch.utils.rate_limit import LIST_RATE_LIMIT, WRITE_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=ApiResponse[NotificationInbox])
@limiter.limit(LIST_RATE_LIMIT)
async def list_notifications(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    unread_only: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0, le=10000),
):
    """The caller's notifications, newest first, with the unread count."""
    items, unread_count = await inbox.list_for_user(db, user.id, limit, offset, unread_only)
    return ApiResponse(
        data=NotificationInbox(
            items=[NotificationResponse.model_validate(n) for n in items],
            unread_count=unread_count,
        )
    )


@router.put("/read-all", response_model=ApiResponse[ReadAllResult])
@limiter.limit(WRITE_RATE_LIMIT)
async def mark_all_read(
    request: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    marked = await inbox.mark_all_read(db, user.id)
    logger.info("notifications_all_marked_read", user_id=str(user.id), count=marked)
    return ApiResponse(data=ReadAllResult(marked_read=marked))


@router.put("/{notification_id}/read", response_model=ApiResponse[NotificationResponse])
@limiter.limit(WRITE_RATE_LIMIT)
async def mark_notification_read(
    request: Request,
    notification_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification = await inbox.mark_read(db, user.id, notification_id)
    logger.info("notification_marked_read", notification_id=str(notification_id))
    return ApiResponse(data=NotificationResponse.model_validate(notification))
