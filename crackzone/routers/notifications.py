from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel
from sqlmodel import Session, select, func

from ..database import get_session
from ..dependencies import get_current_user
from ..models import Notification, User

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: Dict[str, Any]
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationsResponse(BaseModel):
    notifications: List[NotificationResponse]


class NotificationStats(BaseModel):
    total: int
    unread: int
    by_type: Dict[str, int]


@router.get("", response_model=NotificationsResponse)
async def get_notifications(
    type: Optional[str] = None,
    read: Optional[bool] = None,
    limit: Optional[int] = None,
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    """Get the caller's notifications, newest first."""
    statement = select(Notification).where(Notification.user_id == current_user.id)

    if type and type != "all":
        statement = statement.where(Notification.type == type)
    if read is not None:
        statement = statement.where(Notification.read == read)

    statement = statement.order_by(Notification.created_at.desc(), Notification.id.desc())
    if limit:
        statement = statement.limit(limit)

    return {"notifications": db.exec(statement).all()}


@router.get("/stats", response_model=NotificationStats)
async def get_notification_stats(
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    rows = db.exec(
        select(Notification.type, Notification.read, func.count(Notification.id))
        .where(Notification.user_id == current_user.id)
        .group_by(Notification.type, Notification.read)
    ).all()

    by_type: Dict[str, int] = {}
    unread = 0
    for kind, is_read, count in rows:
        by_type[kind] = by_type.get(kind, 0) + count
        if not is_read:
            unread += count

    return {"total": sum(by_type.values()), "unread": unread, "by_type": by_type}


@router.put("/mark-all-read")
async def mark_all_read(
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    unread = db.exec(
        select(Notification).where(
            Notification.user_id == current_user.id,
            Notification.read == False  # noqa: E712
        )
    ).all()

    now = datetime.utcnow()
    for notification in unread:
        notification.read = True
        notification.read_at = now
        db.add(notification)
    db.commit()

    return {"message": "All notifications marked as read", "updated_count": len(unread)}


@router.delete("/clear-all")
async def clear_all(
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    """Delete every notification of the caller."""
    notifications = db.exec(
        select(Notification).where(Notification.user_id == current_user.id)
    ).all()

    for notification in notifications:
        db.delete(notification)
    db.commit()

    return {"message": "All notifications cleared", "deleted_count": len(notifications)}


def _get_own_notification(db: Session, notification_id: int, user: User) -> Notification:
    notification = db.get(Notification, notification_id)
    if not notification or notification.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found"
        )
    return notification


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: int,
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    notification = _get_own_notification(db, notification_id, current_user)

    if not notification.read:
        notification.read = True
        notification.read_at = datetime.utcnow()
        db.add(notification)
        db.commit()
        db.refresh(notification)

    return notification


@router.put("/{notification_id}/unread", response_model=NotificationResponse)
async def mark_unread(
    notification_id: int,
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    notification = _get_own_notification(db, notification_id, current_user)

    if notification.read:
        notification.read = False
        notification.read_at = None
        db.add(notification)
        db.commit()
        db.refresh(notification)

    return notification


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: int,
    db: Session = Depends(get_session),
    current_user: User = Depends(get_current_user)
):
    notification = _get_own_notification(db, notification_id, current_user)
    db.delete(notification)
    db.commit()

    return Response(status_code=status.HTTP_204_NO_CONTENT)
