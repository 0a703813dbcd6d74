from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.config import settings
from tradeflow.core.errors import Conflict, NotFound, ValidationFailed
from tradeflow.core.timeutil import as_naive_utc, utc_now
from tradeflow.models.domain import (
    CommissionType,
    DealStatus,
    InviteStatus,
    NotificationType,
    PartyRole,
    StepStatus,
)
from tradeflow.schemas.deals import DealCreate, PartyData
from tradeflow.services import notifications
from tradeflow.services.deal_claims import claim_deal
from tradeflow.services.deal_numbering import next_deal_number
from tradeflow.services.invite_mailer import InviteEmail, build_invite_url, send_invite_email
from tradeflow.services.step_catalog import STEP_CATALOG
from tradeflow.services.verification_gate import unlock_workflow

logger = logging.getLogger("tradeflow.deals")


@dataclass
class DealCreation:
    deal: models.Deal
    invites: dict[PartyRole, models.Invite] = field(default_factory=dict)
    matched: bool = False

    def invite_links(self, app_url: str | None = None) -> dict[str, str | None]:
        base = app_url or settings.app_url
        links: dict[str, str | None] = {"buyer": None, "seller": None}
        for role, invite in self.invites.items():
            links[role.value.lower()] = build_invite_url(base, invite.token)
        return links


def commission_total(
    commission_type: CommissionType, rate: float, *, estimated_value: float, quantity: float
) -> float:
    if commission_type == CommissionType.PERCENTAGE:
        return round(float(estimated_value) * float(rate) / 100.0, 2)
    if commission_type == CommissionType.PER_UNIT:
        return round(float(rate) * float(quantity), 2)
    return round(float(rate), 2)


def _existing_company(db: Session, data: PartyData, label: str) -> models.Company:
    company = db.get(models.Company, int(data.company_id))
    if company is None:
        raise NotFound(f"{label} company not found", company_id=data.company_id)
    return company


def _new_invite(
    deal: models.Deal,
    role: PartyRole,
    data: PartyData,
    invited_by: int,
    now: datetime,
) -> models.Invite:
    return models.Invite(
        deal_id=deal.id,
        email=str(data.email).strip().lower(),
        company_name=str(data.company).strip(),
        contact_name=data.contact,
        role=role,
        invited_by=invited_by,
        token=str(uuid.uuid4()),
        status=InviteStatus.PENDING,
        sent_at=now,
        expires_at=now + timedelta(days=settings.invite_ttl_days),
    )


def create_deal(
    db: Session,
    payload: DealCreate,
    *,
    broker_id: int,
    now: datetime | None = None,
) -> DealCreation:
    """Create a deal with its 12 steps, invites and optional commission.

    Everything is written in one transaction and committed here. When both
    parties already exist the deal starts matched with Step 1 open.
    Notifications and invite e-mails go out after the commit.
    """

    now = now or utc_now()
    data = payload.deal_data

    buyer = (
        _existing_company(db, payload.buyer_data, "Buyer")
        if payload.buyer_type == "existing"
        else None
    )
    seller = (
        _existing_company(db, payload.seller_data, "Seller")
        if payload.seller_type == "existing"
        else None
    )
    if buyer is not None and seller is not None and buyer.id == seller.id:
        raise ValidationFailed("Buyer and seller must be different companies")

    number = next_deal_number(db, now=now)
    deal = models.Deal(
        deal_number=number.formatted,
        product_type=data.product_type,
        quantity=data.quantity,
        quantity_unit=data.quantity_unit,
        estimated_value=data.estimated_value,
        currency=(data.currency or "USD").upper(),
        delivery_terms=data.delivery_terms,
        location=data.location,
        notes=data.notes,
        buyer_id=buyer.id if buyer else None,
        seller_id=seller.id if seller else None,
        broker_id=int(broker_id),
        status=DealStatus.DRAFT,
        current_step=1,
        buyer_verified=False,
        seller_verified=False,
        version=0,
    )
    db.add(deal)
    db.flush()

    for entry in STEP_CATALOG:
        db.add(
            models.DealStep(
                deal_id=deal.id,
                step_number=entry.number,
                step_name=entry.name,
                status=StepStatus.PENDING,
            )
        )

    creation = DealCreation(deal=deal)
    if buyer is None:
        creation.invites[PartyRole.BUYER] = _new_invite(
            deal, PartyRole.BUYER, payload.buyer_data, broker_id, now
        )
    if seller is None:
        creation.invites[PartyRole.SELLER] = _new_invite(
            deal, PartyRole.SELLER, payload.seller_data, broker_id, now
        )
    for invite in creation.invites.values():
        db.add(invite)

    if payload.commission_data is not None:
        c = payload.commission_data
        db.add(
            models.Commission(
                deal_id=deal.id,
                commission_type=c.type,
                commission_rate=c.amount,
                total_amount=commission_total(
                    c.type, c.amount, estimated_value=data.estimated_value, quantity=data.quantity
                ),
                currency=deal.currency,
            )
        )
    db.flush()

    if buyer is not None and seller is not None:
        creation.matched = unlock_workflow(db, deal, now=now)

    db.commit()
    db.refresh(deal)

    logger.info(
        "deal_created",
        extra={
            "deal_id": deal.id,
            "deal_number": deal.deal_number,
            "broker_id": broker_id,
            "matched": creation.matched,
            "invites": [r.value for r in creation.invites],
        },
    )
    return creation


def after_deal_created(db: Session, creation: DealCreation) -> None:
    """Best-effort side effects of ``create_deal``: notifications and invite e-mails."""

    deal = creation.deal
    invited = ", ".join(r.value.lower() for r in creation.invites) or "no new parties"
    notifications.fan_out(
        db,
        deal.id,
        NotificationType.DEAL_CREATED,
        "Deal Created",
        f"Deal {deal.deal_number} has been created successfully. Invites sent to {invited}.",
        recipient_ids=[deal.broker_id],
    )
    if creation.matched:
        notifications.fan_out(
            db,
            deal.id,
            NotificationType.MATCH_CONFIRMED,
            "Deal matched",
            f"Deal {deal.deal_number} is matched. Step 1 is now open.",
        )

    links = creation.invite_links()
    for role, invite in creation.invites.items():
        send_invite_email(
            InviteEmail(
                to=invite.email,
                company_name=invite.company_name,
                contact_name=invite.contact_name,
                role=role.value,
                deal_number=deal.deal_number,
                invite_url=links[role.value.lower()] or "",
                expires_at=invite.expires_at.isoformat(),
            )
        )


def get_invite(db: Session, token: str, *, now: datetime | None = None) -> models.Invite:
    invite = db.query(models.Invite).filter(models.Invite.token == str(token)).first()
    if invite is None:
        raise NotFound("Invite not found")
    now = now or utc_now()
    if invite.status == InviteStatus.PENDING and as_naive_utc(invite.expires_at) <= now:
        invite.status = InviteStatus.EXPIRED
        db.commit()
        db.refresh(invite)
    return invite


@dataclass(frozen=True)
class InviteAcceptance:
    invite: models.Invite
    deal: models.Deal
    matched: bool


def accept_invite(db: Session, token: str, user, *, now: datetime | None = None) -> InviteAcceptance:
    """Consume an invite exactly once and attach the user's company to the deal."""

    now = now or utc_now()
    invite = get_invite(db, token, now=now)
    if invite.status == InviteStatus.EXPIRED:
        raise Conflict("Invite expired", code="invite_expired")
    if invite.status == InviteStatus.ACCEPTED:
        raise Conflict("Invite already accepted", code="invite_accepted")

    company_id = getattr(user, "company_id", None)
    if company_id is None:
        raise ValidationFailed("User must belong to a company to accept an invite")
    if getattr(user, "role", None) != invite.role:
        raise ValidationFailed(
            f"Invite is for a {invite.role.value} user",
            invite_role=invite.role.value,
        )

    deal = claim_deal(db, invite.deal_id)
    consumed = db.execute(
        update(models.Invite)
        .where(models.Invite.id == invite.id, models.Invite.status == InviteStatus.PENDING)
        .values(status=InviteStatus.ACCEPTED, accepted_at=now, accepted_by=user.id)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not consumed:
        db.rollback()
        raise Conflict("Invite already accepted", code="invite_accepted")

    other = deal.seller_id if invite.role == PartyRole.BUYER else deal.buyer_id
    if other is not None and other == company_id:
        db.rollback()
        raise ValidationFailed("Buyer and seller must be different companies")

    column = models.Deal.buyer_id if invite.role == PartyRole.BUYER else models.Deal.seller_id
    db.execute(
        update(models.Deal)
        .where(models.Deal.id == deal.id, column.is_(None))
        .values({column.key: company_id})
        .execution_options(synchronize_session=False)
    )
    db.refresh(deal)

    matched = False
    if deal.buyer_id is not None and deal.seller_id is not None and deal.matched_at is None:
        db.execute(
            update(models.Deal)
            .where(models.Deal.id == deal.id, models.Deal.matched_at.is_(None))
            .values(matched_at=now)
            .execution_options(synchronize_session=False)
        )
        matched = True

    db.commit()
    db.refresh(invite)
    db.refresh(deal)
    logger.info(
        "invite_accepted",
        extra={
            "deal_id": deal.id,
            "invite_id": invite.id,
            "role": invite.role.value,
            "user_id": user.id,
            "matched": matched,
        },
    )
    return InviteAcceptance(invite=invite, deal=deal, matched=matched)


def after_invite_accepted(db: Session, acceptance: InviteAcceptance) -> None:
    if not acceptance.matched:
        return
    notifications.fan_out(
        db,
        acceptance.deal.id,
        NotificationType.MATCH_CONFIRMED,
        "Parties matched",
        f"Buyer and seller have joined deal {acceptance.deal.deal_number}. "
        "Upload proof of funds and proof of product to open the workflow.",
    )
