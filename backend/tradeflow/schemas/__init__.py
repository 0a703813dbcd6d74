from tradeflow.schemas.deals import (
    ApprovalState,
    CommissionData,
    DealCancel,
    DealCreate,
    DealCreateResponse,
    DealData,
    DealDetail,
    DealRead,
    DealStepRead,
    InviteLinks,
    PartyData,
    StepCompleteResponse,
    StepDetail,
)
from tradeflow.schemas.documents import DocumentRead, DocumentUploadResponse
from tradeflow.schemas.invites import InviteAcceptResponse, InviteDetail, InviteRead
from tradeflow.schemas.notifications import NotificationRead

__all__ = [
    "ApprovalState",
    "CommissionData",
    "DealCancel",
    "DealCreate",
    "DealCreateResponse",
    "DealData",
    "DealDetail",
    "DealRead",
    "DealStepRead",
    "InviteLinks",
    "PartyData",
    "StepCompleteResponse",
    "StepDetail",
    "DocumentRead",
    "DocumentUploadResponse",
    "InviteAcceptResponse",
    "InviteDetail",
    "InviteRead",
    "NotificationRead",
]
