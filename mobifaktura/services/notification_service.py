from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from mobifaktura.core.exceptions import NotFoundError
from mobifaktura.logger_config import logger
from mobifaktura.models.notification import Notification, NotificationType, PREFERENCE_COLUMNS
from mobifaktura.models.user import User, UserRole
from mobifaktura.utils.dates import utcnow


def create_notification(
    db: Session,
    user_id: str,
    type: NotificationType,
    title: str,
    message: str,
    invoice_id: Optional[str] = None,
    company_id: Optional[str] = None,
) -> Optional[Notification]:
    """
    Store a notification if the user has not switched this type off.

    Runs after the business transaction has committed. Failures are
    logged and never propagate.
    """
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            logger.warning(f"Skipping {type.value} notification, user {user_id} not found")
            return None

        column = PREFERENCE_COLUMNS.get(type)
        if column and not getattr(user, column, True):
            logger.debug(f"User {user_id} disabled {type.value} notifications")
            return None

        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            invoice_id=invoice_id,
            company_id=company_id,
        )
        db.add(notification)
        db.commit()
        return notification
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create {type.value} notification for user {user_id}: {str(e)}")
        return None


def notify_many(
    db: Session,
    user_ids: Iterable[str],
    type: NotificationType,
    title: str,
    message: str,
    invoice_id: Optional[str] = None,
    company_id: Optional[str] = None,
) -> int:
    sent = 0
    for user_id in user_ids:
        if create_notification(db, user_id, type, title, message, invoice_id, company_id):
            sent += 1
    return sent


def staff_user_ids(db: Session, exclude: Optional[str] = None) -> List[str]:
    """Ids of all accountants and admins."""
    query = db.query(User.id).filter(User.role.in_([UserRole.accountant, UserRole.admin]))
    if exclude:
        query = query.filter(User.id != exclude)
    return [row.id for row in query.all()]


def get_notifications(
    db: Session,
    user_id: str,
    skip: int = 0,
    limit: int = 50,
    unread_only: bool = False,
) -> tuple[List[Notification], int]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.read.is_(False))
    total = query.count()
    notifications = query.order_by(Notification.created_at.desc()).offset(skip).limit(limit).all()
    return notifications, total


def get_unread_count(db: Session, user_id: str) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .count()
    )


def _get_owned(db: Session, user_id: str, notification_id: str) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        raise NotFoundError("Notification not found")
    return notification


def mark_as_read(db: Session, user_id: str, notification_id: str) -> Notification:
    notification = _get_owned(db, user_id, notification_id)
    if not notification.read:
        notification.read = True
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_as_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .update({"read": True, "read_at": utcnow()}, synchronize_session=False)
    )
    db.commit()
    return updated


def delete_notification(db: Session, user_id: str, notification_id: str) -> None:
    notification = _get_owned(db, user_id, notification_id)
    db.delete(notification)
    db.commit()


def clear_all(db: Session, user_id: str) -> int:
    deleted = (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
