from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, unit_of_work
from ..auth.jwt import get_current_user
from ..models.models import Notification, User
from ..schemas.schemas import NotificationRead
from ..services import notifications as notification_service

router = APIRouter()


@router.get("/", response_model=List[NotificationRead])
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    include_read: bool = Query(True),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Notification]:
    return notification_service.list_notifications(db, current_user, unread_only=not include_read, limit=limit)


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Notification:
    with unit_of_work(db):
        notification = notification_service.mark_read(db, notification_id, current_user)
    return notification
