from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.core.timeutil import utc_now
from tradeflow.models.domain import DealStatus, PartyRole, StepStatus
from tradeflow.services import party_approvals
from tradeflow.services.deal_claims import claim_deal

logger = logging.getLogger("tradeflow.verification")

LOCKED_STATUSES = (DealStatus.DRAFT, DealStatus.PENDING_VERIFICATION)


@dataclass(frozen=True)
class GateResult:
    buyer_verified: bool
    seller_verified: bool
    unlocked: bool
    status: DealStatus


def workflow_unlocked(deal: models.Deal) -> bool:
    """Steps may be worked only once both parties have passed verification."""

    if deal is None:
        return False
    return deal.status not in LOCKED_STATUSES and deal.status != DealStatus.CANCELLED


def unlock_workflow(db: Session, deal: models.Deal, *, now: datetime | None = None) -> bool:
    """Move a locked deal to MATCHED and open Step 1.

    The status guard makes this effective exactly once per deal; later calls
    return False and touch nothing. Callers control commit/rollback.
    """

    now = now or utc_now()
    rowcount = db.execute(
        update(models.Deal)
        .where(
            models.Deal.id == deal.id,
            models.Deal.status.in_(LOCKED_STATUSES),
        )
        .values(
            status=DealStatus.MATCHED,
            current_step=1,
            buyer_verified=True,
            seller_verified=True,
            matched_at=func.coalesce(models.Deal.matched_at, now),
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    if not rowcount:
        return False

    db.execute(
        update(models.DealStep)
        .where(
            models.DealStep.deal_id == deal.id,
            models.DealStep.step_number == 1,
            models.DealStep.status == StepStatus.PENDING,
        )
        .values(status=StepStatus.IN_PROGRESS, started_at=now)
        .execution_options(synchronize_session=False)
    )
    party_approvals.initialize_approvals(db, deal_id=deal.id, step_number=1)
    db.refresh(deal)

    logger.info(
        "workflow_unlocked",
        extra={"deal_id": deal.id, "deal_number": deal.deal_number},
    )
    return True


def record_side_verified(
    db: Session,
    deal_id: int,
    side: PartyRole,
    *,
    now: datetime | None = None,
) -> GateResult:
    """Mark one side verified (buyer by POF, seller by POP).

    Claims the deal row first, so concurrent verifications for the two sides
    are applied one after the other and exactly one of them performs the
    unlock. One-sided verification is not an error.
    """

    if side not in (PartyRole.BUYER, PartyRole.SELLER):
        raise ValueError(f"only buyer or seller can be verified, got {side}")

    deal = claim_deal(db, deal_id)

    if side == PartyRole.BUYER:
        deal.buyer_verified = True
    else:
        deal.seller_verified = True
    if deal.status == DealStatus.DRAFT:
        deal.status = DealStatus.PENDING_VERIFICATION
    db.flush()

    unlocked = False
    if deal.buyer_verified and deal.seller_verified:
        unlocked = unlock_workflow(db, deal, now=now)

    return GateResult(
        buyer_verified=bool(deal.buyer_verified),
        seller_verified=bool(deal.seller_verified),
        unlocked=unlocked,
        status=deal.status,
    )
