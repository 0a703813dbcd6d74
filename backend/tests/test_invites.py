from datetime import timedelta

import pytest

from tradeflow import models
from tradeflow.core.errors import ValidationFailed
from tradeflow.core.timeutil import utc_now
from tradeflow.models import DealStatus, InviteStatus, NotificationType, PartyRole
from tradeflow.services.deal_matching import accept_invite


def _invite(db, deal_id, role):
    return (
        db.query(models.Invite)
        .filter(models.Invite.deal_id == deal_id, models.Invite.role == role)
        .populate_existing()
        .one()
    )


def test_invite_lookup_is_public(client, make_deal, db_session):
    deal = make_deal(seller_type="new")
    invite = _invite(db_session, deal.id, PartyRole.SELLER)

    resp = client.get(f"/api/invites/{invite.token}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["role"] == "SELLER"
    assert body["status"] == "PENDING"
    assert body["company_name"] == "New Seller Co"
    assert body["deal"]["deal_number"] == deal.deal_number

    assert client.get("/api/invites/not-a-token").status_code == 404


def test_accepting_invite_attaches_company(client, act_as, parties, make_deal, db_session):
    deal = make_deal(seller_type="new")
    invite = _invite(db_session, deal.id, PartyRole.SELLER)

    act_as(parties.seller)
    resp = client.post(f"/api/invites/{invite.token}/accept")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["invite"]["status"] == "ACCEPTED"
    assert body["deal"]["seller_id"] == parties.seller_company_id
    assert body["matched"] is True
    # matched parties still need POF/POP before the workflow opens
    assert body["deal"]["status"] == DealStatus.DRAFT.value

    deal = db_session.get(models.Deal, deal.id, populate_existing=True)
    assert deal.matched_at is not None

    notified = (
        db_session.query(models.Notification)
        .filter(
            models.Notification.user_id == parties.seller.id,
            models.Notification.type == NotificationType.MATCH_CONFIRMED,
        )
        .count()
    )
    assert notified == 1


def test_invite_is_consumed_once(client, act_as, parties, make_deal, db_session):
    deal = make_deal(seller_type="new")
    invite = _invite(db_session, deal.id, PartyRole.SELLER)
    act_as(parties.seller)

    assert client.post(f"/api/invites/{invite.token}/accept").status_code == 200
    again = client.post(f"/api/invites/{invite.token}/accept")
    assert again.status_code == 409
    assert again.json()["code"] == "invite_accepted"


def test_expired_invite_cannot_be_accepted(client, act_as, parties, make_deal, db_session):
    deal = make_deal(seller_type="new")
    invite = _invite(db_session, deal.id, PartyRole.SELLER)
    invite.expires_at = utc_now() - timedelta(minutes=1)
    db_session.commit()

    act_as(parties.seller)
    resp = client.post(f"/api/invites/{invite.token}/accept")
    assert resp.status_code == 409
    assert resp.json()["code"] == "invite_expired"
    assert _invite(db_session, deal.id, PartyRole.SELLER).status == InviteStatus.EXPIRED


def test_invite_role_must_match_user_role(client, act_as, parties, make_deal, db_session):
    deal = make_deal(seller_type="new")
    invite = _invite(db_session, deal.id, PartyRole.SELLER)

    act_as(parties.outsider)
    resp = client.post(f"/api/invites/{invite.token}/accept")
    assert resp.status_code == 400
    assert resp.json()["invite_role"] == "SELLER"


def test_buyer_company_cannot_take_the_seller_side(db_session, make_deal, parties):
    deal = make_deal(seller_type="new")
    invite = _invite(db_session, deal.id, PartyRole.SELLER)

    class _SellerAtBuyerCompany:
        id = parties.seller.id
        role = PartyRole.SELLER
        company_id = parties.buyer_company_id

    with pytest.raises(ValidationFailed):
        accept_invite(db_session, invite.token, _SellerAtBuyerCompany())
    db_session.rollback()

    assert _invite(db_session, deal.id, PartyRole.SELLER).status == InviteStatus.PENDING
