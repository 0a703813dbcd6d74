# ruff: noqa: E501
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tradeflow.database import Base


class PartyRole(PyEnum):
    BUYER = "BUYER"
    SELLER = "SELLER"
    BROKER = "BROKER"


class DealStatus(PyEnum):
    DRAFT = "DRAFT"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    MATCHED = "MATCHED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StepStatus(PyEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    BLOCKED = "BLOCKED"
    SKIPPED = "SKIPPED"


class VerificationStatus(PyEnum):
    UNVERIFIED = "UNVERIFIED"
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class ProductType(PyEnum):
    JET_A1 = "JET_A1"
    EN590 = "EN590"
    D6 = "D6"
    LNG = "LNG"
    CRUDE = "CRUDE"
    OTHER = "OTHER"


class QuantityUnit(PyEnum):
    MT = "MT"
    BBL = "BBL"
    MMBTU = "MMBTU"


class DeliveryTerms(PyEnum):
    FOB = "FOB"
    CIF = "CIF"
    EX_TANK = "EX_TANK"
    DES = "DES"
    DAP = "DAP"


class DocumentFolder(PyEnum):
    AGREEMENTS = "AGREEMENTS"
    POF = "POF"
    POP = "POP"
    CONTRACTS = "CONTRACTS"
    INSPECTION = "INSPECTION"
    PAYMENT = "PAYMENT"


class DocumentType(PyEnum):
    NCNDA = "NCNDA"
    IMFPA = "IMFPA"
    ICPO = "ICPO"
    SCO = "SCO"
    SPA = "SPA"
    POF_MT799 = "POF_MT799"
    POF_MT760 = "POF_MT760"
    POF_BCL = "POF_BCL"
    POF_MT199 = "POF_MT199"
    POF_FINANCIAL_STATEMENT = "POF_FINANCIAL_STATEMENT"
    POP_TSA = "POP_TSA"
    POP_SGS = "POP_SGS"
    POP_ATSC = "POP_ATSC"
    POP_CERTIFICATE_ORIGIN = "POP_CERTIFICATE_ORIGIN"
    POP_INJECTION_REPORT = "POP_INJECTION_REPORT"
    POP_EXPORT_LICENSE = "POP_EXPORT_LICENSE"
    DTA = "DTA"
    INSPECTION_REPORT = "INSPECTION_REPORT"
    PAYMENT_MT103 = "PAYMENT_MT103"
    TITLE_TRANSFER = "TITLE_TRANSFER"
    BILL_OF_LADING = "BILL_OF_LADING"
    OTHER = "OTHER"


class InviteStatus(PyEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"


class CommissionType(PyEnum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    PER_UNIT = "PER_UNIT"


class CommissionStatus(PyEnum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


class NotificationType(PyEnum):
    DEAL_CREATED = "DEAL_CREATED"
    INVITE_RECEIVED = "INVITE_RECEIVED"
    VERIFICATION_COMPLETE = "VERIFICATION_COMPLETE"
    MATCH_CONFIRMED = "MATCH_CONFIRMED"
    STEP_COMPLETED = "STEP_COMPLETED"
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    ACTION_REQUIRED = "ACTION_REQUIRED"
    DEAL_COMPLETED = "DEAL_COMPLETED"


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    country: Mapped[str | None] = mapped_column(String(64))
    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus, native_enum=False),
        default=VerificationStatus.UNVERIFIED,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    users = relationship("User", back_populates="company")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[PartyRole] = mapped_column(Enum(PartyRole, native_enum=False), nullable=False)
    company_id: Mapped[int | None] = mapped_column(
        ForeignKey("companies.id"), nullable=True, index=True
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    company = relationship("Company", back_populates="users")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    deal_id: Mapped[int | None] = mapped_column(ForeignKey("deals.id"), nullable=True, index=True)
    payload_json: Mapped[str | None] = mapped_column(Text)

    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(256), nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        unique=True,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DealNumberSequence(Base):
    __tablename__ = "deal_number_sequences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (UniqueConstraint("year", name="uq_deal_number_sequences_year"),)


class Deal(Base):
    __tablename__ = "deals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deal_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)

    product_type: Mapped[ProductType] = mapped_column(
        Enum(ProductType, native_enum=False), nullable=False
    )
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    quantity_unit: Mapped[QuantityUnit] = mapped_column(
        Enum(QuantityUnit, native_enum=False), nullable=False
    )
    estimated_value: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="USD", nullable=False)
    delivery_terms: Mapped[DeliveryTerms] = mapped_column(
        Enum(DeliveryTerms, native_enum=False), nullable=False
    )
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    # buyer/seller are companies; both stay NULL until the party is matched.
    buyer_id: Mapped[int | None] = mapped_column(
        ForeignKey("companies.id"), nullable=True, index=True
    )
    seller_id: Mapped[int | None] = mapped_column(
        ForeignKey("companies.id"), nullable=True, index=True
    )
    broker_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    status: Mapped[DealStatus] = mapped_column(
        Enum(DealStatus, native_enum=False),
        default=DealStatus.DRAFT,
        nullable=False,
        index=True,
    )
    current_step: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    buyer_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    seller_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Bumped by every workflow mutation; claiming the row serializes writers per deal.
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("current_step BETWEEN 1 AND 12", name="ck_deals_current_step_range"),
    )

    buyer = relationship("Company", foreign_keys=[buyer_id], lazy="joined")
    seller = relationship("Company", foreign_keys=[seller_id], lazy="joined")
    broker = relationship("User", foreign_keys=[broker_id], lazy="joined")
    steps = relationship(
        "DealStep",
        back_populates="deal",
        cascade="all, delete-orphan",
        order_by="DealStep.step_number",
    )


class DealStep(Base):
    __tablename__ = "deal_steps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deal_id: Mapped[int] = mapped_column(ForeignKey("deals.id"), nullable=False, index=True)
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[StepStatus] = mapped_column(
        Enum(StepStatus, native_enum=False), default=StepStatus.PENDING, nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("deal_id", "step_number", name="uq_deal_steps_deal_id_step_number"),
    )

    deal = relationship("Deal", back_populates="steps")


class PartyApproval(Base):
    __tablename__ = "step_party_approvals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deal_id: Mapped[int] = mapped_column(ForeignKey("deals.id"), nullable=False, index=True)
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    party_role: Mapped[PartyRole] = mapped_column(
        Enum(PartyRole, native_enum=False), nullable=False
    )
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    document_id: Mapped[int | None] = mapped_column(ForeignKey("documents.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "deal_id",
            "step_number",
            "party_role",
            name="uq_step_party_approvals_deal_step_role",
        ),
    )


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deal_id: Mapped[int] = mapped_column(ForeignKey("deals.id"), nullable=False, index=True)
    uploaded_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(128), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_uri: Mapped[str] = mapped_column(String(1024), nullable=False)
    checksum_sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    document_type: Mapped[DocumentType] = mapped_column(
        Enum(DocumentType, native_enum=False), nullable=False
    )
    folder: Mapped[DocumentFolder] = mapped_column(
        Enum(DocumentFolder, native_enum=False), nullable=False, index=True
    )
    # 0 = pre-workflow verification upload (POF/POP).
    step_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    verification_status: Mapped[VerificationStatus] = mapped_column(
        Enum(VerificationStatus, native_enum=False),
        default=VerificationStatus.PENDING,
        nullable=False,
        index=True,
    )
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    visible_to_buyer: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    visible_to_seller: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    visible_to_broker: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DocumentVerificationJob(Base):
    __tablename__ = "document_verification_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        ForeignKey("documents.id"), unique=True, nullable=False, index=True
    )

    # queued -> running -> done|failed; running -> queued on retry or expired lease
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default="queued", index=True
    )
    run_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    document = relationship("Document", lazy="joined")


class Invite(Base):
    __tablename__ = "invites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deal_id: Mapped[int] = mapped_column(ForeignKey("deals.id"), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[PartyRole] = mapped_column(Enum(PartyRole, native_enum=False), nullable=False)
    invited_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    status: Mapped[InviteStatus] = mapped_column(
        Enum(InviteStatus, native_enum=False), default=InviteStatus.PENDING, nullable=False
    )
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    deal = relationship("Deal", lazy="joined")


class Commission(Base):
    __tablename__ = "commissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deal_id: Mapped[int] = mapped_column(ForeignKey("deals.id"), nullable=False, index=True)
    commission_type: Mapped[CommissionType] = mapped_column(
        Enum(CommissionType, native_enum=False), nullable=False
    )
    commission_rate: Mapped[float] = mapped_column(Float, nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(8), default="USD", nullable=False)
    status: Mapped[CommissionStatus] = mapped_column(
        Enum(CommissionStatus, native_enum=False), default=CommissionStatus.PENDING, nullable=False
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    deal_id: Mapped[int | None] = mapped_column(ForeignKey("deals.id"), nullable=True, index=True)
    type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, native_enum=False), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    action_url: Mapped[str | None] = mapped_column(String(512))
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
