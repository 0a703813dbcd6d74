import pytest

from tradeflow import models
from tradeflow.models import DealStatus, PartyRole, StepStatus
from tradeflow.services.deal_claims import load_step
from tradeflow.services.verification_gate import record_side_verified, workflow_unlocked


def test_invited_deal_starts_locked(make_deal):
    deal = make_deal(seller_type="new")

    assert deal.status == DealStatus.DRAFT
    assert not deal.buyer_verified and not deal.seller_verified
    assert not workflow_unlocked(deal)


def test_one_sided_verification_keeps_workflow_locked(db_session, make_deal):
    deal = make_deal(seller_type="new")

    gate = record_side_verified(db_session, deal.id, PartyRole.BUYER)
    db_session.commit()

    assert gate.buyer_verified and not gate.seller_verified
    assert not gate.unlocked
    assert gate.status == DealStatus.PENDING_VERIFICATION

    deal = db_session.get(models.Deal, deal.id, populate_existing=True)
    assert not workflow_unlocked(deal)
    assert load_step(db_session, deal.id, 1).status == StepStatus.PENDING


def test_both_sides_unlock_exactly_once(db_session, make_deal):
    deal = make_deal(seller_type="new")

    record_side_verified(db_session, deal.id, PartyRole.BUYER)
    db_session.commit()
    gate = record_side_verified(db_session, deal.id, PartyRole.SELLER)
    db_session.commit()

    assert gate.unlocked
    assert gate.status == DealStatus.MATCHED
    deal = db_session.get(models.Deal, deal.id, populate_existing=True)
    assert deal.current_step == 1
    assert deal.matched_at is not None
    assert load_step(db_session, deal.id, 1).status == StepStatus.IN_PROGRESS

    again = record_side_verified(db_session, deal.id, PartyRole.SELLER)
    db_session.commit()
    assert not again.unlocked
    assert again.status == DealStatus.MATCHED


def test_broker_is_not_a_verification_side(db_session, make_deal):
    deal = make_deal(seller_type="new")

    with pytest.raises(ValueError):
        record_side_verified(db_session, deal.id, PartyRole.BROKER)


def test_concurrent_side_verifications_unlock_once(db_session, make_deal, run_concurrently):
    deal = make_deal(seller_type="new")
    deal_id = deal.id

    results, errors = run_concurrently(
        lambda db: record_side_verified(db, deal_id, PartyRole.BUYER),
        lambda db: record_side_verified(db, deal_id, PartyRole.SELLER),
    )

    assert errors == []
    assert sorted(g.unlocked for g in results) == [False, True]
    deal = db_session.get(models.Deal, deal_id, populate_existing=True)
    assert deal.status == DealStatus.MATCHED
    assert deal.current_step == 1
    assert load_step(db_session, deal_id, 1).status == StepStatus.IN_PROGRESS
    roles = sorted(
        a.party_role.value
        for a in db_session.query(models.PartyApproval).filter(
            models.PartyApproval.deal_id == deal_id, models.PartyApproval.step_number == 1
        )
    )
    assert roles == ["BROKER", "BUYER", "SELLER"]
