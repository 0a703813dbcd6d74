from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from tradeflow import models
from tradeflow.core.errors import NotFound, PermissionDenied
from tradeflow.models.domain import PartyRole


def party_role_for(deal: models.Deal, user) -> PartyRole | None:
    """The role ``user`` plays on ``deal``, derived from the deal's parties.

    The broker is matched by user id; buyer and seller by the user's company.
    """

    if deal is None or user is None:
        return None
    user_id = getattr(user, "id", None)
    company_id = getattr(user, "company_id", None)
    if user_id is not None and deal.broker_id == user_id:
        return PartyRole.BROKER
    if company_id is not None:
        if deal.buyer_id == company_id:
            return PartyRole.BUYER
        if deal.seller_id == company_id:
            return PartyRole.SELLER
    return None


def get_deal_for_party(db: Session, deal_id: int, user) -> tuple[models.Deal, PartyRole]:
    deal = db.get(models.Deal, int(deal_id))
    if deal is None:
        raise NotFound("Deal not found")
    role = party_role_for(deal, user)
    if role is None:
        raise PermissionDenied("You are not a party to this deal")
    return deal, role


def deals_visible_to(db: Session, user) -> Query:
    q = db.query(models.Deal)
    clauses = [models.Deal.broker_id == user.id]
    company_id = getattr(user, "company_id", None)
    if company_id is not None:
        clauses.append(models.Deal.buyer_id == company_id)
        clauses.append(models.Deal.seller_id == company_id)
    return q.filter(or_(*clauses))


def document_visible_to(document: models.Document, role: PartyRole) -> bool:
    if role == PartyRole.BROKER:
        return bool(document.visible_to_broker)
    if role == PartyRole.BUYER:
        return bool(document.visible_to_buyer)
    if role == PartyRole.SELLER:
        return bool(document.visible_to_seller)
    return False
