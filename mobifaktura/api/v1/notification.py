from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from mobifaktura.core.dependencies import get_current_user, get_db, read_rate_limit
from mobifaktura.models.user import User
from mobifaktura.schemas.notification import (
    AffectedResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from mobifaktura.services import notification_service

router = APIRouter()


@router.get("", response_model=NotificationListResponse, dependencies=[Depends(read_rate_limit)])
def get_notifications(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    unread_only: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    items, total = notification_service.get_notifications(
        db, current_user.id, skip=skip, limit=limit, unread_only=unread_only
    )
    return NotificationListResponse(total=total, items=items)


@router.get("/unread-count", response_model=UnreadCountResponse)
def get_unread_count(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return UnreadCountResponse(count=notification_service.get_unread_count(db, current_user.id))


@router.post("/read-all", response_model=AffectedResponse)
def mark_all_as_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return AffectedResponse(affected=notification_service.mark_all_as_read(db, current_user.id))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_as_read(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return notification_service.mark_as_read(db, current_user.id, notification_id)


@router.delete("", response_model=AffectedResponse)
def clear_all(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return AffectedResponse(affected=notification_service.clear_all(db, current_user.id))


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notification_service.delete_notification(db, current_user.id, notification_id)
    return None
