"""Notification emitter.

Notifications are a side effect of order transitions. Each insert runs in
its own savepoint inside the caller's transaction: it commits together with
the transition that caused it, but a failed insert is logged and dropped
without taking the transition down with it.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fulfillment.models.notification import Notification, NotificationCategory

logger = logging.getLogger(__name__)

ORDER_HISTORY_URL = "/order-history"


def emit(
    db: Session,
    user_id: Optional[str],
    title: str,
    message: str,
    category: NotificationCategory = NotificationCategory.order,
    action_url: Optional[str] = None,
) -> Optional[Notification]:
    """Append a notification for ``user_id``; returns None if nothing was written."""
    if not user_id:
        logger.info("No recipient for notification '%s', skipping", title)
        return None

    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        category=category,
        read=False,
        action_url=action_url,
    )
    try:
        with db.begin_nested():
            db.add(notification)
            db.flush()
    except SQLAlchemyError:
        logger.exception("Failed to create notification '%s' for user %s", title, user_id)
        return None

    logger.info("Notification '%s' queued for user %s", title, user_id)
    return notification


def list_for_user(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, notification_id: str, user_id: str) -> Optional[Notification]:
    """Flip the read flag; only the recipient may do so."""
    notification = (
        db.query(Notification)
        .filter(Notification.notification_id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        return None
    if not notification.read:
        notification.read = True
        db.commit()
        db.refresh(notification)
    return notification
