from __future__ import annotations

# ruff: noqa: B008
import os
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.api.deps import get_current_user
from tradeflow.config import settings
from tradeflow.core.errors import ValidationFailed
from tradeflow.database import get_db
from tradeflow.models.domain import DocumentFolder, DocumentType, NotificationType
from tradeflow.schemas.documents import DocumentRead, DocumentUploadResponse
from tradeflow.services import notifications
from tradeflow.services.audit import audit_event
from tradeflow.services.deal_access import document_visible_to, get_deal_for_party
from tradeflow.services.document_intake import UploadRequest, intake_document

router = APIRouter(tags=["documents"])


def _parse_enum(enum_cls, raw: Optional[str], field: str):
    if raw is None or not str(raw).strip():
        raise ValidationFailed("Missing required fields", fields=[field])
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        raise ValidationFailed(
            f"Invalid {field}",
            allowed=[m.value for m in enum_cls],
        ) from None


@router.post("/upload", response_model=DocumentUploadResponse, status_code=status.HTTP_201_CREATED)
def upload_document(
    request: Request,
    file: Optional[UploadFile] = File(None),
    deal_id: Optional[int] = Form(None, alias="dealId"),
    document_type: Optional[str] = Form(None, alias="documentType"),
    folder: Optional[str] = Form(None, alias="folder"),
    step_number: int = Form(0, alias="stepNumber"),
    visible_to_buyer: bool = Form(True, alias="visibleToBuyer"),
    visible_to_seller: bool = Form(True, alias="visibleToSeller"),
    visible_to_broker: bool = Form(True, alias="visibleToBroker"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    missing = [
        name
        for name, value in (
            ("file", file),
            ("dealId", deal_id),
            ("documentType", document_type),
            ("folder", folder),
        )
        if value in (None, "")
    ]
    if missing:
        raise ValidationFailed("Missing required fields", fields=missing)

    doc_type = _parse_enum(DocumentType, document_type, "documentType")
    doc_folder = _parse_enum(DocumentFolder, folder, "folder")

    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    if size > settings.max_upload_bytes:
        raise ValidationFailed("File size exceeds limit", max_bytes=settings.max_upload_bytes)

    document = intake_document(
        db,
        user=current_user,
        request=UploadRequest(
            deal_id=int(deal_id),
            document_type=doc_type,
            folder=doc_folder,
            step_number=int(step_number),
            filename=file.filename or "",
            content_type=file.content_type or "",
            content=file.file.read(),
            visible_to_buyer=visible_to_buyer,
            visible_to_seller=visible_to_seller,
            visible_to_broker=visible_to_broker,
        ),
    )

    notifications.fan_out(
        db,
        document.deal_id,
        NotificationType.DOCUMENT_UPLOADED,
        "Document uploaded",
        f"{document.document_type.value} was uploaded and is awaiting verification.",
    )
    audit_event(
        "document.uploaded",
        current_user.id,
        {
            "document_id": document.id,
            "document_type": document.document_type.value,
            "folder": document.folder.value,
            "step_number": document.step_number,
            "checksum_sha256": document.checksum_sha256,
        },
        db=db,
        deal_id=document.deal_id,
        request_id=request.headers.get("x-request-id"),
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    db.refresh(document)
    return DocumentUploadResponse(
        document=DocumentRead.model_validate(document),
        message="Document uploaded successfully. Verification in progress.",
    )


@router.get("/deals/{deal_id}/documents", response_model=list[DocumentRead])
def list_deal_documents(
    deal_id: int,
    step_number: Optional[int] = Query(None, alias="stepNumber"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    deal, role = get_deal_for_party(db, deal_id, current_user)
    q = db.query(models.Document).filter(models.Document.deal_id == deal.id)
    if step_number is not None:
        q = q.filter(models.Document.step_number == step_number)
    rows = q.order_by(models.Document.created_at.desc(), models.Document.id.desc()).all()
    return [d for d in rows if document_visible_to(d, role)]
