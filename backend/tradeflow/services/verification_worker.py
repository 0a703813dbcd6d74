from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.config import settings
from tradeflow.core.timeutil import utc_now
from tradeflow.database import SessionLocal
from tradeflow.models.domain import NotificationType, VerificationStatus
from tradeflow.services import notifications
from tradeflow.services.deal_access import party_role_for
from tradeflow.services.deal_claims import claim_deal
from tradeflow.services.document_intake import VERIFICATION_FOLDERS
from tradeflow.services.step_catalog import RoleAuthorizer
from tradeflow.services.step_transitions import StepTransitionResult, apply_party_approval
from tradeflow.services.verification_gate import GateResult, record_side_verified

logger = logging.getLogger("tradeflow.verification")


@dataclass
class VerificationOutcome:
    document_id: int
    deal_id: int
    gate: GateResult | None = None
    transition: StepTransitionResult | None = None
    notes: list[str] = field(default_factory=list)


def _apply_verification(db: Session, job: models.DocumentVerificationJob, now: datetime):
    document = db.get(models.Document, job.document_id, populate_existing=True)
    if document is None:
        raise LookupError(f"document {job.document_id} no longer exists")

    # Claim first; every effect below is decided on the deal's state as of now.
    deal = claim_deal(db, document.deal_id)
    outcome = VerificationOutcome(document_id=document.id, deal_id=deal.id)

    if document.verification_status != VerificationStatus.VERIFIED:
        document.verification_status = VerificationStatus.VERIFIED
        document.verified_at = now
        db.flush()

    side = VERIFICATION_FOLDERS.get(document.folder)
    if side is not None:
        outcome.gate = record_side_verified(db, deal.id, side, now=now)

    if document.step_number > 0:
        uploader = db.get(models.User, document.uploaded_by)
        role = party_role_for(deal, uploader)
        if role is None or not RoleAuthorizer.can_act(role, document.step_number):
            outcome.notes.append("uploader_cannot_act")
        else:
            outcome.transition = apply_party_approval(
                db,
                deal.id,
                document.step_number,
                role,
                document.uploaded_by,
                document_id=document.id,
                now=now,
            )

    return outcome


def _notify(db: Session, outcome: VerificationOutcome, document_type: str) -> None:
    notifications.fan_out(
        db,
        outcome.deal_id,
        NotificationType.VERIFICATION_COMPLETE,
        "Document verified",
        f"{document_type} has been verified.",
    )
    if outcome.gate is not None and outcome.gate.unlocked:
        notifications.fan_out(
            db,
            outcome.deal_id,
            NotificationType.MATCH_CONFIRMED,
            "Deal matched",
            "Both parties are verified. The deal workflow is now open.",
        )
    if outcome.transition is not None:
        notifications.notify_step_result(db, outcome.deal_id, outcome.transition)


def _reclaim_abandoned(db: Session, now: datetime) -> int:
    """Requeue running jobs whose lease expired (their worker died mid-job)."""

    Job = models.DocumentVerificationJob
    cutoff = now - timedelta(seconds=settings.verification_lease_seconds)
    stale = (Job.status == "running", Job.updated_at < cutoff)

    exhausted = db.execute(
        update(Job)
        .where(*stale, Job.attempts >= settings.verification_max_attempts)
        .values(status="failed", last_error="lease expired", updated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    requeued = db.execute(
        update(Job)
        .where(*stale)
        .values(status="queued", run_after=now, updated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    if exhausted or requeued:
        logger.warning(
            "verification_jobs_reclaimed",
            extra={"requeued": requeued, "failed": exhausted},
        )
    return requeued


def _release_failed(db: Session, job_id: int, attempt: int, exc: Exception, now: datetime) -> str:
    # A vanished document will never verify; anything else is retried with backoff.
    permanent = isinstance(exc, LookupError) or attempt >= settings.verification_max_attempts
    if permanent:
        values = {"status": "failed"}
    else:
        delay = settings.verification_retry_seconds * (2 ** (attempt - 1))
        values = {"status": "queued", "run_after": now + timedelta(seconds=delay)}

    db.execute(
        update(models.DocumentVerificationJob)
        .where(
            models.DocumentVerificationJob.id == job_id,
            models.DocumentVerificationJob.status == "running",
        )
        .values(last_error=str(exc)[:500], updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return values["status"]


def run_once(db: Session, *, now: datetime | None = None) -> int | None:
    """Process at most one due verification job.

    State machine: queued -> running -> done|failed, with running -> queued
    for a retry after a transient error or an expired lease. A job is failed
    for good once ``VERIFICATION_MAX_ATTEMPTS`` is used up or its document is gone.

    Returns the job id when a job is claimed (even if it fails), otherwise None.
    """

    now = now or utc_now()
    _reclaim_abandoned(db, now)

    job = (
        db.query(models.DocumentVerificationJob)
        .filter(models.DocumentVerificationJob.status == "queued")
        .filter(models.DocumentVerificationJob.run_after <= now)
        .order_by(
            models.DocumentVerificationJob.run_after.asc(),
            models.DocumentVerificationJob.id.asc(),
        )
        .first()
    )
    if job is None:
        return None

    claimed = db.execute(
        update(models.DocumentVerificationJob)
        .where(
            models.DocumentVerificationJob.id == job.id,
            models.DocumentVerificationJob.status == "queued",
        )
        .values(
            status="running",
            attempts=models.DocumentVerificationJob.attempts + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    if claimed != 1:
        db.rollback()
        return None

    db.commit()
    job_id = job.id
    document_id = job.document_id
    attempt = job.attempts

    try:
        outcome = _apply_verification(db, job, now)
        db.execute(
            update(models.DocumentVerificationJob)
            .where(
                models.DocumentVerificationJob.id == job_id,
                models.DocumentVerificationJob.status == "running",
            )
            .values(status="done", last_error=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        status = _release_failed(db, job_id, attempt, exc, now)
        logger.exception(
            "verification_job_failed",
            extra={
                "job_id": job_id,
                "document_id": document_id,
                "attempt": attempt,
                "next_status": status,
                "error": str(exc),
            },
        )
        return job_id

    document = db.get(models.Document, document_id)
    logger.info(
        "verification_job_done",
        extra={
            "job_id": job_id,
            "document_id": document_id,
            "deal_id": outcome.deal_id,
            "unlocked": bool(outcome.gate and outcome.gate.unlocked),
            "step_completed": bool(outcome.transition and outcome.transition.step_completed),
            "notes": outcome.notes,
        },
    )
    _notify(db, outcome, document.document_type.value if document else "Document")
    return job_id


def drain(db: Session, *, now: datetime | None = None, limit: int = 100) -> list[int]:
    """Run due jobs until none are left (or ``limit`` is reached)."""

    processed: list[int] = []
    for _ in range(max(0, int(limit))):
        job_id = run_once(db, now=now)
        if job_id is None:
            break
        processed.append(job_id)
    return processed


class VerificationJobRunner:
    """Polls for due verification jobs on a daemon thread.

    Several API processes may each run one; the guarded queued -> running
    claim makes sure a job is processed by only one of them.
    """

    def __init__(self, poll_seconds: float = 1.0) -> None:
        self.poll_seconds = max(0.05, float(poll_seconds))
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="verification-job-runner", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)

    def _loop(self) -> None:
        logger.info("verification_runner_started", extra={"poll_seconds": self.poll_seconds})
        while not self._stop.is_set():
            db = SessionLocal()
            try:
                processed = drain(db)
                if processed:
                    logger.info("verification_runner_batch", extra={"jobs": len(processed)})
            except Exception as exc:
                logger.exception("verification_runner_failed", extra={"error": str(exc)})
            finally:
                db.close()
            if self._stop.wait(self.poll_seconds):
                break
        logger.info("verification_runner_stopped")
