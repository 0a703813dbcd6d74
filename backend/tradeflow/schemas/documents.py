from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from tradeflow.models.domain import DocumentFolder, DocumentType, VerificationStatus


class DocumentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    deal_id: int
    uploaded_by: int
    filename: str
    file_type: str
    file_size: int
    checksum_sha256: str
    document_type: DocumentType
    folder: DocumentFolder
    step_number: int
    verification_status: VerificationStatus
    verified_at: Optional[datetime] = None
    visible_to_buyer: bool
    visible_to_seller: bool
    visible_to_broker: bool
    created_at: Optional[datetime] = None


class DocumentUploadResponse(BaseModel):
    success: bool = True
    document: DocumentRead
    message: str
