from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.core.errors import NotFound


def claim_deal(db: Session, deal_id: int) -> models.Deal:
    """Serialize writers on one deal and return its freshly loaded row.

    Must be the first statement of a mutating transaction:

        UPDATE deals SET version = version + 1 WHERE id = :deal_id

    On PostgreSQL this takes the row lock; on SQLite it takes the database write
    lock. Either way a concurrent writer on the same deal waits until commit and
    then observes our changes when it re-reads. Callers control commit/rollback.
    """

    rowcount = db.execute(
        update(models.Deal)
        .where(models.Deal.id == int(deal_id))
        .values(version=models.Deal.version + 1)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not rowcount:
        raise NotFound("Deal not found")

    deal = db.get(models.Deal, int(deal_id), populate_existing=True)
    if deal is None:
        raise NotFound("Deal not found")
    return deal


def load_step(db: Session, deal_id: int, step_number: int) -> models.DealStep | None:
    return (
        db.query(models.DealStep)
        .filter(
            models.DealStep.deal_id == int(deal_id),
            models.DealStep.step_number == int(step_number),
        )
        .populate_existing()
        .first()
    )
