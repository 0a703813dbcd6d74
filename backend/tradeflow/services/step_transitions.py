"""Deal workflow state machine.

Every public function here is a complete unit of work on one deal: it claims
the deal row (see ``deal_claims.claim_deal``), re-reads the current state and
applies forward-only transitions through guarded conditional UPDATEs:

    UPDATE deal_steps SET status = 'COMPLETED' ... WHERE ... AND status != 'COMPLETED'
    UPDATE deals SET current_step = N + 1 ...     WHERE id = :id AND current_step = N

Because of the guards, a duplicated request or a stale verification event can
never complete a step twice or advance the deal twice. Callers control
commit/rollback and send notifications after commit using the returned
``StepTransitionResult``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.core.errors import (
    Conflict,
    NotFound,
    PermissionDenied,
    StepAlreadyCompleted,
    WorkflowLocked,
)
from tradeflow.core.timeutil import utc_now
from tradeflow.models.domain import DealStatus, PartyRole, StepStatus
from tradeflow.services import party_approvals
from tradeflow.services.deal_claims import claim_deal, load_step
from tradeflow.services.step_catalog import TOTAL_STEPS, is_valid_step
from tradeflow.services.verification_gate import workflow_unlocked

logger = logging.getLogger("tradeflow.workflow")


@dataclass(frozen=True)
class StepTransitionResult:
    deal_id: int
    step_number: int
    step_completed: bool = False
    advanced: bool = False
    deal_completed: bool = False
    current_step: int | None = None
    skipped_reason: str | None = None

    @property
    def changed(self) -> bool:
        return self.step_completed or self.advanced or self.deal_completed


def _ensure_open(deal: models.Deal) -> None:
    if deal.status == DealStatus.CANCELLED:
        raise Conflict("Deal cancelled", code="deal_cancelled")
    if not workflow_unlocked(deal):
        raise WorkflowLocked()


def _mark_step_completed(
    db: Session, deal_id: int, step_number: int, user_id: int | None, now: datetime
) -> bool:
    rowcount = db.execute(
        update(models.DealStep)
        .where(
            models.DealStep.deal_id == int(deal_id),
            models.DealStep.step_number == int(step_number),
            models.DealStep.status != StepStatus.COMPLETED,
        )
        .values(status=StepStatus.COMPLETED, completed_at=now, completed_by=user_id)
        .execution_options(synchronize_session=False)
    ).rowcount
    return bool(rowcount)


def advance_after_completion(
    db: Session,
    deal: models.Deal,
    step_number: int,
    *,
    now: datetime | None = None,
) -> StepTransitionResult:
    """Move the deal past a step that has just been completed.

    Only the current step moves the deal. Completing step 12 finishes the deal
    and leaves ``current_step`` at 12. A completion of any other step is
    recorded on the step row alone; when the deal later reaches such a step it
    moves straight past it.
    """

    now = now or utc_now()
    n = int(step_number)

    if n == TOTAL_STEPS:
        rowcount = db.execute(
            update(models.Deal)
            .where(
                models.Deal.id == deal.id,
                models.Deal.current_step == TOTAL_STEPS,
                models.Deal.status != DealStatus.COMPLETED,
            )
            .values(status=DealStatus.COMPLETED, completed_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.refresh(deal)
        return StepTransitionResult(
            deal_id=deal.id,
            step_number=n,
            step_completed=True,
            deal_completed=bool(rowcount),
            current_step=deal.current_step,
        )

    rowcount = db.execute(
        update(models.Deal)
        .where(models.Deal.id == deal.id, models.Deal.current_step == n)
        .values(current_step=n + 1, status=DealStatus.IN_PROGRESS)
        .execution_options(synchronize_session=False)
    ).rowcount

    if rowcount:
        next_step = load_step(db, deal.id, n + 1)
        if next_step is not None and next_step.status == StepStatus.COMPLETED:
            # Completed out of order earlier; keep moving.
            cascaded = advance_after_completion(db, deal, n + 1, now=now)
            return StepTransitionResult(
                deal_id=deal.id,
                step_number=n,
                step_completed=True,
                advanced=True,
                deal_completed=cascaded.deal_completed,
                current_step=cascaded.current_step,
            )
        db.execute(
            update(models.DealStep)
            .where(
                models.DealStep.deal_id == deal.id,
                models.DealStep.step_number == n + 1,
                models.DealStep.status == StepStatus.PENDING,
            )
            .values(status=StepStatus.IN_PROGRESS, started_at=now)
            .execution_options(synchronize_session=False)
        )
        party_approvals.initialize_approvals(db, deal_id=deal.id, step_number=n + 1)

    db.refresh(deal)
    return StepTransitionResult(
        deal_id=deal.id,
        step_number=n,
        step_completed=True,
        advanced=bool(rowcount),
        current_step=deal.current_step,
    )


def complete_step(
    db: Session,
    deal_id: int,
    step_number: int,
    user_id: int | None,
    *,
    now: datetime | None = None,
) -> StepTransitionResult:
    """Mark a step COMPLETED and advance the deal if it was the current step."""

    if not is_valid_step(step_number):
        raise NotFound("Step not found")

    now = now or utc_now()
    deal = claim_deal(db, deal_id)
    _ensure_open(deal)

    step = load_step(db, deal.id, step_number)
    if step is None:
        raise NotFound("Step not found")
    if step.status == StepStatus.COMPLETED:
        raise StepAlreadyCompleted()

    if not _mark_step_completed(db, deal.id, step_number, user_id, now):
        raise StepAlreadyCompleted()

    result = advance_after_completion(db, deal, step_number, now=now)
    logger.info(
        "step_completed",
        extra={
            "deal_id": deal.id,
            "step_number": int(step_number),
            "user_id": user_id,
            "advanced": result.advanced,
            "deal_completed": result.deal_completed,
            "current_step": result.current_step,
        },
    )
    return result


def apply_party_approval(
    db: Session,
    deal_id: int,
    step_number: int,
    role: PartyRole,
    user_id: int | None,
    *,
    document_id: int | None = None,
    now: datetime | None = None,
) -> StepTransitionResult:
    """Record one party's approval and complete the step once all are in.

    Events that arrive after the deal has moved on (or before the step opened)
    are skipped without mutating anything.
    """

    now = now or utc_now()
    deal = claim_deal(db, deal_id)

    def _skipped(reason: str) -> StepTransitionResult:
        logger.info(
            "party_approval_skipped",
            extra={"deal_id": deal.id, "step_number": int(step_number), "reason": reason},
        )
        return StepTransitionResult(
            deal_id=deal.id,
            step_number=int(step_number),
            current_step=deal.current_step,
            skipped_reason=reason,
        )

    if not workflow_unlocked(deal) or deal.status == DealStatus.COMPLETED:
        return _skipped("deal_not_active")
    if int(step_number) != int(deal.current_step):
        return _skipped("step_not_current")

    step = load_step(db, deal.id, step_number)
    if step is None or step.status != StepStatus.IN_PROGRESS:
        return _skipped("step_not_in_progress")

    party_approvals.record_approval(
        db,
        deal_id=deal.id,
        step_number=step_number,
        role=role,
        user_id=user_id,
        document_id=document_id,
        now=now,
    )

    if not party_approvals.all_approved(db, deal_id=deal.id, step_number=step_number):
        return StepTransitionResult(
            deal_id=deal.id, step_number=int(step_number), current_step=deal.current_step
        )

    if not _mark_step_completed(db, deal.id, step_number, user_id, now):
        return _skipped("step_already_completed")

    result = advance_after_completion(db, deal, step_number, now=now)
    logger.info(
        "step_completed",
        extra={
            "deal_id": deal.id,
            "step_number": int(step_number),
            "user_id": user_id,
            "via": "party_approval",
            "advanced": result.advanced,
            "deal_completed": result.deal_completed,
            "current_step": result.current_step,
        },
    )
    return result


def cancel_deal(
    db: Session,
    deal_id: int,
    user_id: int,
    *,
    reason: str | None = None,
) -> models.Deal:
    deal = claim_deal(db, deal_id)
    if deal.broker_id != user_id:
        raise PermissionDenied("Only the deal's broker can cancel it")
    if deal.status == DealStatus.COMPLETED:
        raise Conflict("Completed deals cannot be cancelled", code="deal_completed")
    if deal.status == DealStatus.CANCELLED:
        return deal

    current = load_step(db, deal.id, deal.current_step)
    if current is not None and current.status == StepStatus.IN_PROGRESS:
        current.status = StepStatus.BLOCKED
        if reason:
            current.notes = reason

    deal.status = DealStatus.CANCELLED
    db.flush()
    logger.info("deal_cancelled", extra={"deal_id": deal.id, "user_id": user_id})
    return deal
