from __future__ import annotations

# ruff: noqa: B008
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.api.deps import get_current_user
from tradeflow.database import get_db
from tradeflow.schemas.notifications import NotificationRead
from tradeflow.services import notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    unread: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return notifications.list_for_user(db, current_user.id, unread_only=unread, limit=limit)


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return notifications.mark_read(db, notification_id, current_user.id)
