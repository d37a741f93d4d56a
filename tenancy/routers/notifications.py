from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlmodel import col

from tenancy import dependencies, models, serializers, util
from tenancy.db import get_db, rollback_on_error
from tenancy.lifecycle import notifications
from tenancy.settings import app_settings

router = APIRouter()


@router.get(
    "/notifications",
    tags=[util.Tags.notifications],
    response_model=serializers.Envelope[serializers.NotificationListResponse],
)
async def list_notifications(
    page: int = Query(0, ge=0),
    page_size: int = Query(20, gt=0),
    unread: bool = Query(False),
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
) -> Any:
    """
    List the user's notifications, newest first.

    :param unread: Whether to list unread notifications only.
    """
    page_size = min(page_size, app_settings.max_page_size)
    assert user.id is not None
    if unread:
        query = models.Notification.unread_for(session, user.id)
    else:
        query = models.Notification.for_recipient(session, user.id)
    query = query.order_by(col(models.Notification.created_at).desc(), col(models.Notification.id).desc())

    return serializers.ok(
        {
            "items": query.limit(page_size).offset(page * page_size).all(),
            "count": query.count(),
            "page": page,
            "page_size": page_size,
            "unread_count": models.Notification.unread_for(session, user.id).count(),
        }
    )


@router.patch(
    "/notifications/{id}/read",
    tags=[util.Tags.notifications],
    response_model=serializers.Envelope[models.NotificationRead],
)
async def mark_notification_read(
    id: int,
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
) -> Any:
    """
    Mark one of the user's notifications as read. Marking it again does nothing.
    """
    with rollback_on_error(session):
        notification = notifications.mark_read(session, id, user)

        session.commit()
        return serializers.ok(notification)


@router.post(
    "/notifications/mark-all-read",
    tags=[util.Tags.notifications],
    response_model=serializers.Envelope[serializers.MarkAllReadResponse],
)
async def mark_all_notifications_read(
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
) -> Any:
    """
    Mark all the user's notifications as read.

    :return: The number of notifications that were unread.
    """
    with rollback_on_error(session):
        count = notifications.mark_all_read(session, user)

        session.commit()
        return serializers.ok({"count": count})
