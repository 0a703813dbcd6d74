from __future__ import annotations

# ruff: noqa: B008
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.api.deps import get_current_user
from tradeflow.database import get_db
from tradeflow.schemas.deals import DealRead
from tradeflow.schemas.invites import InviteAcceptResponse, InviteDetail, InviteRead
from tradeflow.services import deal_matching
from tradeflow.services.audit import audit_event

router = APIRouter(prefix="/invites", tags=["invites"])


@router.get("/{token}", response_model=InviteDetail)
def get_invite(token: str, db: Session = Depends(get_db)):
    """Public lookup used by the invite landing page; the token is the credential."""
    return deal_matching.get_invite(db, token)


@router.post("/{token}/accept", response_model=InviteAcceptResponse)
def accept_invite(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    acceptance = deal_matching.accept_invite(db, token, current_user)
    deal_matching.after_invite_accepted(db, acceptance)
    audit_event(
        "invite.accepted",
        current_user.id,
        {"invite_id": acceptance.invite.id, "role": acceptance.invite.role.value},
        db=db,
        deal_id=acceptance.deal.id,
        idempotency_key=f"invite:{acceptance.invite.id}:accepted",
        request_id=request.headers.get("x-request-id"),
    )
    db.refresh(acceptance.invite)
    db.refresh(acceptance.deal)
    return InviteAcceptResponse(
        invite=InviteRead.model_validate(acceptance.invite),
        deal=DealRead.model_validate(acceptance.deal),
        matched=acceptance.matched,
    )
