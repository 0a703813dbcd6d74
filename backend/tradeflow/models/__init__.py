from tradeflow.models.domain import (
    AuditLog,
    Commission,
    CommissionStatus,
    CommissionType,
    Company,
    Deal,
    DealNumberSequence,
    DealStatus,
    DealStep,
    DeliveryTerms,
    Document,
    DocumentFolder,
    DocumentType,
    DocumentVerificationJob,
    Invite,
    InviteStatus,
    Notification,
    NotificationType,
    PartyApproval,
    PartyRole,
    ProductType,
    QuantityUnit,
    StepStatus,
    User,
    VerificationStatus,
)

__all__ = [
    "AuditLog",
    "Commission",
    "CommissionStatus",
    "CommissionType",
    "Company",
    "Deal",
    "DealNumberSequence",
    "DealStatus",
    "DealStep",
    "DeliveryTerms",
    "Document",
    "DocumentFolder",
    "DocumentType",
    "DocumentVerificationJob",
    "Invite",
    "InviteStatus",
    "Notification",
    "NotificationType",
    "PartyApproval",
    "PartyRole",
    "ProductType",
    "QuantityUnit",
    "StepStatus",
    "User",
    "VerificationStatus",
]
