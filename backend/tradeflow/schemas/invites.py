from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from tradeflow.models.domain import InviteStatus, PartyRole
from tradeflow.schemas.deals import DealRead


class InviteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    deal_id: int
    email: str
    company_name: str
    contact_name: Optional[str] = None
    role: PartyRole
    status: InviteStatus
    sent_at: Optional[datetime] = None
    expires_at: datetime
    accepted_at: Optional[datetime] = None


class InviteDetail(InviteRead):
    deal: DealRead


class InviteAcceptResponse(BaseModel):
    invite: InviteRead
    deal: DealRead
    matched: bool
