"""Upload intake: validate, store the blob, record the document, queue verification.

The upload is a small saga without a distributed transaction. The blob is
written first; if recording the document fails the blob is deleted again
before the error is reported. Workflow effects (verification flags, party
approvals) are applied later by ``verification_worker`` against whatever
state the deal is in by then.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.config import settings
from tradeflow.core.errors import (
    Conflict,
    NotFound,
    PermissionDenied,
    StepAlreadyCompleted,
    UpstreamFailure,
    ValidationFailed,
    WorkflowLocked,
)
from tradeflow.core.timeutil import utc_now
from tradeflow.models.domain import (
    DocumentFolder,
    DocumentType,
    PartyRole,
    StepStatus,
    VerificationStatus,
)
from tradeflow.services import document_storage
from tradeflow.services.deal_access import get_deal_for_party
from tradeflow.services.deal_claims import load_step
from tradeflow.services.party_approvals import ensure_can_act
from tradeflow.services.step_catalog import step_info
from tradeflow.services.verification_gate import workflow_unlocked

logger = logging.getLogger("tradeflow.documents")

ALLOWED_CONTENT_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "image/png",
        "image/jpeg",
    }
)

# Which side a verification folder proves, and who may upload it.
VERIFICATION_FOLDERS: dict[DocumentFolder, PartyRole] = {
    DocumentFolder.POF: PartyRole.BUYER,
    DocumentFolder.POP: PartyRole.SELLER,
}


@dataclass(frozen=True)
class UploadRequest:
    deal_id: int
    document_type: DocumentType
    folder: DocumentFolder
    step_number: int
    filename: str
    content_type: str
    content: bytes
    visible_to_buyer: bool = True
    visible_to_seller: bool = True
    visible_to_broker: bool = True


def validate_file(*, filename: str, content_type: str, size: int) -> None:
    if not filename:
        raise ValidationFailed("Missing required fields", fields=["file"])
    if size <= 0:
        raise ValidationFailed("Empty file")
    if size > settings.max_upload_bytes:
        raise ValidationFailed(
            "File size exceeds limit",
            max_bytes=settings.max_upload_bytes,
        )
    if (content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
        raise ValidationFailed(
            "Invalid file type",
            allowed_types=sorted(ALLOWED_CONTENT_TYPES),
        )


def _check_step_upload(db: Session, deal: models.Deal, role: PartyRole, step_number: int) -> None:
    if step_info(step_number) is None:
        raise NotFound("Step not found")
    # Non-parties get 403 regardless of step state.
    ensure_can_act(role, step_number)
    if not workflow_unlocked(deal):
        raise WorkflowLocked()

    step = load_step(db, deal.id, step_number)
    if step is None:
        raise NotFound("Step not found")
    if step.status == StepStatus.COMPLETED:
        raise StepAlreadyCompleted()
    if step.status != StepStatus.IN_PROGRESS:
        raise Conflict("Step is not in progress", code="step_not_in_progress")


def _check_verification_upload(role: PartyRole, folder: DocumentFolder) -> None:
    side = VERIFICATION_FOLDERS.get(folder)
    if side is None:
        return
    if role not in (side, PartyRole.BROKER):
        raise PermissionDenied(
            f"{folder.value} documents verify the {side.value.lower()}",
            required_parties=[side, PartyRole.BROKER],
        )


def intake_document(
    db: Session,
    *,
    user,
    request: UploadRequest,
    now: datetime | None = None,
) -> models.Document:
    """Store an uploaded document and queue its verification job.

    Commits on success. Raises a ``TradeflowError`` for every rejected upload;
    nothing is written in that case.
    """

    validate_file(
        filename=request.filename,
        content_type=request.content_type,
        size=len(request.content),
    )
    if request.step_number < 0:
        raise ValidationFailed("Invalid step number")

    deal, role = get_deal_for_party(db, request.deal_id, user)
    if request.step_number > 0:
        _check_step_upload(db, deal, role, request.step_number)
    else:
        _check_verification_upload(role, request.folder)

    now = now or utc_now()
    blob = document_storage.write_deal_document_bytes(
        deal_id=deal.id,
        filename=request.filename,
        content=request.content,
    )

    try:
        document = models.Document(
            deal_id=deal.id,
            uploaded_by=user.id,
            filename=blob.file_name,
            file_type=request.content_type,
            file_size=blob.size,
            storage_uri=blob.storage_uri,
            checksum_sha256=blob.checksum_sha256,
            document_type=request.document_type,
            folder=request.folder,
            step_number=int(request.step_number),
            verification_status=VerificationStatus.PENDING,
            visible_to_buyer=request.visible_to_buyer,
            visible_to_seller=request.visible_to_seller,
            visible_to_broker=request.visible_to_broker,
        )
        db.add(document)
        db.flush()
        db.add(
            models.DocumentVerificationJob(
                document_id=document.id,
                status="queued",
                run_after=now + timedelta(seconds=settings.verification_delay_seconds),
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        document_storage.delete_blob(blob.storage_uri)
        logger.exception(
            "document_insert_failed",
            extra={"deal_id": deal.id, "storage_uri": blob.storage_uri, "error": str(exc)},
        )
        raise UpstreamFailure("Failed to save document") from exc

    db.refresh(document)
    logger.info(
        "document_uploaded",
        extra={
            "deal_id": deal.id,
            "document_id": document.id,
            "document_type": document.document_type.value,
            "step_number": document.step_number,
            "user_id": user.id,
            "role": role.value,
        },
    )
    return document
