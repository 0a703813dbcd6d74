from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from tradeflow.models.domain import (
    CommissionType,
    DealStatus,
    DeliveryTerms,
    ProductType,
    QuantityUnit,
    StepStatus,
)

PartyKind = Literal["new", "existing"]


class DealData(BaseModel):
    product_type: ProductType
    quantity: float = Field(..., gt=0)
    quantity_unit: QuantityUnit
    estimated_value: float = Field(..., ge=0)
    currency: str = Field("USD", min_length=3, max_length=8)
    delivery_terms: DeliveryTerms
    location: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = None


class PartyData(BaseModel):
    """Either a reference to an existing company or the contact for a new one."""

    company_id: Optional[int] = Field(
        None, validation_alias=AliasChoices("companyId", "existingCompanyId", "company_id")
    )
    company: Optional[str] = Field(None, max_length=255)
    contact: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=64)


class CommissionData(BaseModel):
    type: CommissionType
    amount: float = Field(..., ge=0)


class DealCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deal_data: DealData = Field(..., alias="dealData")
    buyer_data: PartyData = Field(..., alias="buyerData")
    buyer_type: PartyKind = Field("new", alias="buyerType")
    seller_data: PartyData = Field(..., alias="sellerData")
    seller_type: PartyKind = Field("new", alias="sellerType")
    commission_data: Optional[CommissionData] = Field(None, alias="commissionData")

    @model_validator(mode="after")
    def _check_parties(self) -> "DealCreate":
        for label, kind, data in (
            ("buyerData", self.buyer_type, self.buyer_data),
            ("sellerData", self.seller_type, self.seller_data),
        ):
            if kind == "existing":
                if data.company_id is None:
                    raise ValueError(f"{label}.companyId is required for an existing party")
            elif not data.email or not data.company:
                raise ValueError(f"{label}.email and {label}.company are required for a new party")
        return self


class CompanySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class DealStepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_number: int
    step_name: str
    status: StepStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[int] = None
    notes: Optional[str] = None


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    deal_number: str
    product_type: ProductType
    quantity: float
    quantity_unit: QuantityUnit
    estimated_value: float
    currency: str
    delivery_terms: DeliveryTerms
    location: str
    notes: Optional[str] = None
    buyer_id: Optional[int] = None
    seller_id: Optional[int] = None
    broker_id: int
    buyer: Optional[CompanySummary] = None
    seller: Optional[CompanySummary] = None
    status: DealStatus
    current_step: int
    buyer_verified: bool
    seller_verified: bool
    matched_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class DealDetail(DealRead):
    steps: list[DealStepRead] = []
    my_role: Optional[str] = None
    workflow_unlocked: bool = False


class InviteLinks(BaseModel):
    buyer: Optional[str] = None
    seller: Optional[str] = None


class DealCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deal: DealRead
    invite_links: InviteLinks = Field(..., serialization_alias="inviteLinks")


class ApprovalState(BaseModel):
    required_parties: list[str]
    approved: dict[str, bool]
    missing: list[str]
    complete: bool


class StepDetail(BaseModel):
    step: DealStepRead
    phase: str
    description: str
    required_parties: list[str]
    required_documents: list[str]
    is_current: bool
    approvals: ApprovalState
    my_role: Optional[str] = None
    can_act: bool
    can_mark_complete: bool
    workflow_unlocked: bool


class StepCompleteResponse(BaseModel):
    success: bool = True
    step_number: int
    current_step: int
    advanced: bool
    deal_completed: bool
    deal_status: DealStatus


class DealCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)
