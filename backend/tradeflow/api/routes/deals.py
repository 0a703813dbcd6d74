from __future__ import annotations

# ruff: noqa: B008
import logging

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.api.deps import get_current_user, require_roles
from tradeflow.core.errors import NotFound, PermissionDenied
from tradeflow.database import get_db
from tradeflow.models.domain import DealStatus, PartyRole
from tradeflow.schemas.deals import (
    ApprovalState,
    DealCancel,
    DealCreate,
    DealCreateResponse,
    DealDetail,
    DealRead,
    DealStepRead,
    InviteLinks,
    StepCompleteResponse,
    StepDetail,
)
from tradeflow.services import deal_matching, notifications, party_approvals, step_transitions
from tradeflow.services.audit import audit_event
from tradeflow.services.deal_access import deals_visible_to, get_deal_for_party
from tradeflow.services.deal_claims import load_step
from tradeflow.services.step_catalog import RoleAuthorizer, required_parties, step_info
from tradeflow.services.verification_gate import workflow_unlocked

logger = logging.getLogger("tradeflow.deals")

router = APIRouter(prefix="/deals", tags=["deals"])

_broker_dep = require_roles(PartyRole.BROKER)


def _request_meta(request: Request) -> dict:
    return {
        "request_id": request.headers.get("x-request-id"),
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


@router.post("", response_model=DealCreateResponse, status_code=status.HTTP_201_CREATED)
def create_deal(
    payload: DealCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_broker_dep),
):
    creation = deal_matching.create_deal(db, payload, broker_id=current_user.id)
    deal_matching.after_deal_created(db, creation)
    audit_event(
        "deal.created",
        current_user.id,
        {
            "deal_number": creation.deal.deal_number,
            "buyer_type": payload.buyer_type,
            "seller_type": payload.seller_type,
            "matched": creation.matched,
        },
        db=db,
        deal_id=creation.deal.id,
        **_request_meta(request),
    )
    db.refresh(creation.deal)
    return DealCreateResponse(
        deal=DealRead.model_validate(creation.deal),
        invite_links=InviteLinks(**creation.invite_links()),
    )


@router.get("", response_model=list[DealRead])
def list_deals(
    status_filter: DealStatus | None = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    q = deals_visible_to(db, current_user)
    if status_filter is not None:
        q = q.filter(models.Deal.status == status_filter)
    return q.order_by(models.Deal.created_at.desc(), models.Deal.id.desc()).limit(limit).all()


@router.get("/{deal_id}", response_model=DealDetail)
def get_deal(
    deal_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    deal, role = get_deal_for_party(db, deal_id, current_user)
    return DealDetail.model_validate(deal).model_copy(
        update={"my_role": role.value, "workflow_unlocked": workflow_unlocked(deal)}
    )


@router.get("/{deal_id}/steps/{step_number}", response_model=StepDetail)
def get_step(
    deal_id: int,
    step_number: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    deal, role = get_deal_for_party(db, deal_id, current_user)
    entry = step_info(step_number)
    step = load_step(db, deal.id, step_number) if entry else None
    if entry is None or step is None:
        raise NotFound("Step not found")

    summary = party_approvals.approval_summary(db, deal_id=deal.id, step_number=step_number)
    return StepDetail(
        step=DealStepRead.model_validate(step),
        phase=entry.phase,
        description=entry.description,
        required_parties=[r.value for r in entry.required_parties],
        required_documents=[d.value for d in entry.required_documents],
        is_current=deal.current_step == step_number,
        approvals=ApprovalState(
            required_parties=summary.required_parties,
            approved=summary.approved,
            missing=summary.missing,
            complete=summary.complete,
        ),
        my_role=role.value,
        can_act=RoleAuthorizer.can_act(role, step_number),
        can_mark_complete=RoleAuthorizer.can_mark_complete(role, step_number),
        workflow_unlocked=workflow_unlocked(deal),
    )


@router.post("/{deal_id}/steps/{step_number}/complete", response_model=StepCompleteResponse)
def complete_step(
    deal_id: int,
    step_number: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    deal, role = get_deal_for_party(db, deal_id, current_user)
    if step_info(step_number) is None:
        raise NotFound("Step not found")
    if not RoleAuthorizer.can_mark_complete(role, step_number):
        raise PermissionDenied(
            "Only the broker or the step's sole required party can mark it complete",
            required_parties=required_parties(step_number),
        )

    result = step_transitions.complete_step(db, deal.id, step_number, current_user.id)
    db.commit()

    notifications.notify_step_result(db, deal.id, result)
    audit_event(
        "deal.step.completed",
        current_user.id,
        {
            "step_number": step_number,
            "role": role.value,
            "advanced": result.advanced,
            "deal_completed": result.deal_completed,
            "current_step": result.current_step,
        },
        db=db,
        deal_id=deal.id,
        **_request_meta(request),
    )

    deal = db.get(models.Deal, deal.id, populate_existing=True)
    return StepCompleteResponse(
        step_number=step_number,
        current_step=deal.current_step,
        advanced=result.advanced,
        deal_completed=result.deal_completed,
        deal_status=deal.status,
    )


@router.post("/{deal_id}/cancel", response_model=DealRead)
def cancel_deal(
    deal_id: int,
    request: Request,
    payload: DealCancel | None = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(_broker_dep),
):
    reason = payload.reason if payload else None
    deal = step_transitions.cancel_deal(db, deal_id, current_user.id, reason=reason)
    db.commit()
    db.refresh(deal)
    audit_event(
        "deal.cancelled",
        current_user.id,
        {"reason": reason},
        db=db,
        deal_id=deal.id,
        **_request_meta(request),
    )
    return deal
