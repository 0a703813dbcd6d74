from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.core.errors import NotFound
from tradeflow.core.timeutil import utc_now
from tradeflow.models.domain import NotificationType
from tradeflow.services.step_catalog import step_label

logger = logging.getLogger("tradeflow.notifications")


def deal_action_url(deal_id: int) -> str:
    return f"/deals/{int(deal_id)}"


def deal_recipient_ids(db: Session, deal: models.Deal) -> list[int]:
    """Users of the buyer and seller companies, plus the broker."""

    company_ids = [cid for cid in (deal.buyer_id, deal.seller_id) if cid is not None]
    ids: list[int] = []
    if company_ids:
        rows = (
            db.query(models.User.id)
            .filter(models.User.company_id.in_(company_ids))
            .filter(models.User.active.is_(True))
            .order_by(models.User.id.asc())
            .all()
        )
        ids.extend(int(r[0]) for r in rows)
    if deal.broker_id is not None and deal.broker_id not in ids:
        ids.append(int(deal.broker_id))
    return ids


def fan_out(
    db: Session,
    deal_id: int,
    type: NotificationType,
    title: str,
    message: str,
    action_url: str | None = None,
    *,
    recipient_ids: Iterable[int] | None = None,
) -> int:
    """Insert one notification per recipient and commit.

    Runs after the workflow transaction has committed. Any failure is logged and
    rolled back; it never propagates to the caller. Returns the number of
    notifications written.
    """

    try:
        deal = db.get(models.Deal, int(deal_id))
        if deal is None:
            logger.warning("notification_fanout_no_deal", extra={"deal_id": deal_id})
            return 0

        targets = list(recipient_ids) if recipient_ids is not None else deal_recipient_ids(db, deal)
        url = action_url if action_url is not None else deal_action_url(deal.id)
        for user_id in targets:
            db.add(
                models.Notification(
                    user_id=int(user_id),
                    deal_id=deal.id,
                    type=type,
                    title=title,
                    message=message,
                    action_url=url,
                )
            )
        db.commit()
        logger.info(
            "notification_fanout",
            extra={"deal_id": deal.id, "type": type.value, "recipients": len(targets)},
        )
        return len(targets)
    except Exception as exc:
        db.rollback()
        logger.exception(
            "notification_fanout_failed",
            extra={"deal_id": deal_id, "type": getattr(type, "value", type), "error": str(exc)},
        )
        return 0


def notify_step_result(db: Session, deal_id: int, result) -> int:
    """Fan out STEP_COMPLETED / DEAL_COMPLETED for a ``StepTransitionResult``."""

    if result is None or not result.step_completed:
        return 0

    deal = db.get(models.Deal, int(deal_id))
    if deal is None:
        return 0

    name = step_label(result.step_number)
    sent = fan_out(
        db,
        deal.id,
        NotificationType.STEP_COMPLETED,
        f"Step {result.step_number} completed",
        f"{name} has been completed for deal {deal.deal_number}.",
    )
    if result.deal_completed:
        sent += fan_out(
            db,
            deal.id,
            NotificationType.DEAL_COMPLETED,
            "Deal completed",
            f"Deal {deal.deal_number} has completed all workflow steps.",
        )
    return sent


def list_for_user(
    db: Session,
    user_id: int,
    *,
    unread_only: bool = False,
    limit: int = 50,
) -> list[models.Notification]:
    q = db.query(models.Notification).filter(models.Notification.user_id == int(user_id))
    if unread_only:
        q = q.filter(models.Notification.read.is_(False))
    return (
        q.order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .limit(max(1, min(int(limit), 200)))
        .all()
    )


def mark_read(db: Session, notification_id: int, user_id: int) -> models.Notification:
    row = db.get(models.Notification, int(notification_id))
    if row is None or row.user_id != int(user_id):
        raise NotFound("Notification not found")
    if not row.read:
        row.read = True
        row.read_at = utc_now()
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        db.refresh(row)
    return row
