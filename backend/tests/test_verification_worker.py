from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from tradeflow import models
from tradeflow.config import settings
from tradeflow.core.timeutil import utc_now
from tradeflow.models import DealStatus, NotificationType, StepStatus, VerificationStatus
from tradeflow.services import verification_worker
from tradeflow.services.deal_claims import load_step
from tradeflow.services.step_transitions import complete_step
from tradeflow.services.verification_worker import drain, run_once

PDF = ("doc.pdf", b"%PDF-1.4 signed", "application/pdf")


def _upload(client, deal_id, document_type, folder, step_number=0):
    resp = client.post(
        "/api/upload",
        data={
            "dealId": str(deal_id),
            "documentType": document_type,
            "folder": folder,
            "stepNumber": str(step_number),
        },
        files={"file": PDF},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["document"]["id"]


def _later():
    return utc_now() + timedelta(seconds=30)


def _deal(db, deal_id):
    return db.get(models.Deal, deal_id, populate_existing=True)


def test_job_waits_for_its_delay(client, act_as, parties, make_deal, db_session):
    deal = make_deal(seller_type="new")
    act_as(parties.buyer)
    _upload(client, deal.id, "POF_MT799", "POF")

    assert run_once(db_session, now=utc_now() - timedelta(seconds=1)) is None
    job = db_session.query(models.DocumentVerificationJob).one()
    assert job.status == "queued"


def test_pof_alone_keeps_deal_locked(client, act_as, parties, make_deal, db_session):
    deal = make_deal(seller_type="new")
    act_as(parties.buyer)
    doc_id = _upload(client, deal.id, "POF_MT799", "POF")

    job_id = run_once(db_session, now=_later())
    assert job_id is not None

    db_session.expire_all()
    doc = db_session.get(models.Document, doc_id)
    assert doc.verification_status == VerificationStatus.VERIFIED
    assert doc.verified_at is not None
    deal = _deal(db_session, deal.id)
    assert deal.buyer_verified and not deal.seller_verified
    assert deal.status == DealStatus.PENDING_VERIFICATION
    assert db_session.get(models.DocumentVerificationJob, job_id).status == "done"


def test_pof_and_pop_unlock_the_workflow(client, act_as, parties, make_deal, db_session):
    deal = make_deal(seller_type="new")
    deal.seller_id = parties.seller_company_id
    db_session.commit()

    act_as(parties.buyer)
    _upload(client, deal.id, "POF_BCL", "POF")
    act_as(parties.seller)
    _upload(client, deal.id, "POP_SGS", "POP")

    processed = drain(db_session, now=_later())
    assert len(processed) == 2

    deal = _deal(db_session, deal.id)
    assert deal.status == DealStatus.MATCHED
    assert deal.current_step == 1
    assert load_step(db_session, deal.id, 1).status == StepStatus.IN_PROGRESS

    kinds = {
        n.type
        for n in db_session.query(models.Notification)
        .filter(models.Notification.user_id == parties.buyer.id)
        .all()
    }
    assert NotificationType.VERIFICATION_COMPLETE in kinds
    assert NotificationType.MATCH_CONFIRMED in kinds


def test_all_three_step_one_uploads_complete_the_step(
    client, act_as, parties, make_deal, db_session
):
    deal = make_deal()

    act_as(parties.buyer)
    _upload(client, deal.id, "NCNDA", "AGREEMENTS", step_number=1)
    act_as(parties.seller)
    _upload(client, deal.id, "NCNDA", "AGREEMENTS", step_number=1)

    drain(db_session, now=_later())
    assert _deal(db_session, deal.id).current_step == 1

    act_as(parties.broker)
    _upload(client, deal.id, "IMFPA", "AGREEMENTS", step_number=1)
    drain(db_session, now=_later())

    deal = _deal(db_session, deal.id)
    assert deal.current_step == 2
    assert load_step(db_session, deal.id, 1).status == StepStatus.COMPLETED
    assert load_step(db_session, deal.id, 2).status == StepStatus.IN_PROGRESS

    approvals = (
        db_session.query(models.PartyApproval)
        .filter(models.PartyApproval.deal_id == deal.id, models.PartyApproval.step_number == 1)
        .all()
    )
    assert all(a.approved and a.document_id is not None for a in approvals)


def test_verification_after_manual_completion_does_not_advance_twice(
    client, act_as, parties, make_deal, db_session
):
    deal = make_deal()
    complete_step(db_session, deal.id, 1, parties.broker.id)
    db_session.commit()

    act_as(parties.buyer)
    doc_id = _upload(client, deal.id, "ICPO", "AGREEMENTS", step_number=2)

    complete_step(db_session, deal.id, 2, parties.broker.id)
    db_session.commit()
    assert _deal(db_session, deal.id).current_step == 3

    job_id = run_once(db_session, now=_later())

    db_session.expire_all()
    assert db_session.get(models.DocumentVerificationJob, job_id).status == "done"
    assert db_session.get(models.Document, doc_id).verification_status == VerificationStatus.VERIFIED
    deal = _deal(db_session, deal.id)
    assert deal.current_step == 3
    assert load_step(db_session, deal.id, 3).status == StepStatus.IN_PROGRESS


def test_job_for_missing_document_fails(db_session):
    db_session.add(
        models.DocumentVerificationJob(document_id=4242, status="queued", run_after=utc_now())
    )
    db_session.commit()

    job_id = run_once(db_session, now=_later())

    db_session.expire_all()
    job = db_session.get(models.DocumentVerificationJob, job_id)
    assert job.status == "failed"
    assert job.attempts == 1
    assert "4242" in job.last_error
    assert run_once(db_session, now=_later()) is None


def _locked_once(monkeypatch):
    real_claim = verification_worker.claim_deal
    calls = {"n": 0}

    def _claim(db, deal_id):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("UPDATE deals", {}, Exception("database is locked"))
        return real_claim(db, deal_id)

    monkeypatch.setattr(verification_worker, "claim_deal", _claim)


def test_transient_failure_is_retried_and_step_completes(
    client, act_as, parties, make_deal, db_session, monkeypatch
):
    deal = make_deal()
    complete_step(db_session, deal.id, 1, parties.broker.id)
    db_session.commit()
    act_as(parties.buyer)
    _upload(client, deal.id, "ICPO", "AGREEMENTS", step_number=2)
    _locked_once(monkeypatch)

    first_run = _later()
    job_id = run_once(db_session, now=first_run)

    db_session.expire_all()
    job = db_session.get(models.DocumentVerificationJob, job_id)
    assert job.status == "queued"
    assert job.attempts == 1
    assert "database is locked" in job.last_error
    assert load_step(db_session, deal.id, 2).status == StepStatus.IN_PROGRESS

    assert run_once(db_session, now=first_run) is None

    assert drain(db_session, now=first_run + timedelta(minutes=5)) == [job_id]

    db_session.expire_all()
    job = db_session.get(models.DocumentVerificationJob, job_id)
    assert job.status == "done"
    assert job.attempts == 2
    assert load_step(db_session, deal.id, 2).status == StepStatus.COMPLETED
    assert _deal(db_session, deal.id).current_step == 3


def test_job_fails_once_attempts_are_used_up(
    client, act_as, parties, make_deal, db_session, monkeypatch
):
    deal = make_deal(seller_type="new")
    act_as(parties.buyer)
    _upload(client, deal.id, "POF_MT799", "POF")

    def _always_locked(db, deal_id):
        raise OperationalError("UPDATE deals", {}, Exception("database is locked"))

    monkeypatch.setattr(verification_worker, "claim_deal", _always_locked)
    monkeypatch.setattr(settings, "verification_max_attempts", 2)

    start = _later()
    job_id = run_once(db_session, now=start)
    assert run_once(db_session, now=start + timedelta(hours=1)) == job_id
    assert run_once(db_session, now=start + timedelta(hours=2)) is None

    db_session.expire_all()
    job = db_session.get(models.DocumentVerificationJob, job_id)
    assert job.status == "failed"
    assert job.attempts == 2
    assert not _deal(db_session, deal.id).buyer_verified


def test_abandoned_running_job_is_reclaimed(client, act_as, parties, make_deal, db_session):
    deal = make_deal(seller_type="new")
    act_as(parties.buyer)
    _upload(client, deal.id, "POF_MT799", "POF")

    db_session.execute(
        update(models.DocumentVerificationJob).values(
            status="running", attempts=1, updated_at=utc_now() - timedelta(hours=1)
        )
    )
    db_session.commit()

    job_id = run_once(db_session, now=_later())
    assert job_id is not None

    db_session.expire_all()
    job = db_session.get(models.DocumentVerificationJob, job_id)
    assert job.status == "done"
    assert job.attempts == 2
    assert _deal(db_session, deal.id).buyer_verified
