from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.core.errors import PermissionDenied
from tradeflow.core.timeutil import utc_now
from tradeflow.database import dialect_name
from tradeflow.models.domain import PartyRole
from tradeflow.services.step_catalog import RoleAuthorizer, required_parties

_APPROVAL_KEY = ["deal_id", "step_number", "party_role"]


def _insert_for(db: Session):
    # ON CONFLICT is dialect specific in SQLAlchemy; both supported dialects share the shape.
    if dialect_name(db) == "postgresql":
        return postgresql.insert
    return sqlite.insert


def ensure_can_act(role: PartyRole | None, step_number: int) -> None:
    """Raise 403 unless ``role`` is one of the step's required parties."""

    if not RoleAuthorizer.can_act(role, step_number):
        raise PermissionDenied(
            "Your role is not required for this step",
            required_parties=required_parties(step_number),
        )


def record_approval(
    db: Session,
    *,
    deal_id: int,
    step_number: int,
    role: PartyRole,
    user_id: int | None,
    document_id: int | None = None,
    now: datetime | None = None,
) -> None:
    """Upsert the (deal, step, role) approval as approved.

    Re-recording an existing approval overwrites ``user_id``/``document_id`` and
    refreshes ``approved_at``; it never creates a second row.
    """

    ensure_can_act(role, step_number)
    now = now or utc_now()

    insert = _insert_for(db)
    stmt = insert(models.PartyApproval).values(
        deal_id=int(deal_id),
        step_number=int(step_number),
        party_role=role,
        user_id=user_id,
        document_id=document_id,
        approved=True,
        approved_at=now,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=_APPROVAL_KEY,
        set_={
            "user_id": stmt.excluded.user_id,
            "document_id": stmt.excluded.document_id,
            "approved": True,
            "approved_at": stmt.excluded.approved_at,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)


def initialize_approvals(
    db: Session,
    *,
    deal_id: int,
    step_number: int,
    parties: Iterable[PartyRole] | None = None,
) -> None:
    """Seed unapproved placeholder rows; existing rows are left untouched."""

    roles = tuple(parties) if parties is not None else required_parties(step_number)
    if not roles:
        return

    now = utc_now()
    insert = _insert_for(db)
    stmt = insert(models.PartyApproval).values(
        [
            {
                "deal_id": int(deal_id),
                "step_number": int(step_number),
                "party_role": role,
                "approved": False,
                "created_at": now,
                "updated_at": now,
            }
            for role in roles
        ]
    )
    db.execute(stmt.on_conflict_do_nothing(index_elements=_APPROVAL_KEY))


def approved_roles(db: Session, *, deal_id: int, step_number: int) -> set[PartyRole]:
    rows = (
        db.query(models.PartyApproval.party_role)
        .filter(
            models.PartyApproval.deal_id == int(deal_id),
            models.PartyApproval.step_number == int(step_number),
            models.PartyApproval.approved.is_(True),
        )
        .all()
    )
    return {r[0] for r in rows}


def all_approved(db: Session, *, deal_id: int, step_number: int) -> bool:
    parties = required_parties(step_number)
    if not parties:
        return False
    approved = approved_roles(db, deal_id=deal_id, step_number=step_number)
    return all(role in approved for role in parties)


@dataclass(frozen=True)
class ApprovalSummary:
    step_number: int
    required_parties: list[str]
    approved: dict[str, bool]
    missing: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return bool(self.required_parties) and not self.missing


def approval_summary(db: Session, *, deal_id: int, step_number: int) -> ApprovalSummary:
    parties = required_parties(step_number)
    approved = approved_roles(db, deal_id=deal_id, step_number=step_number)
    states = {role.value: role in approved for role in parties}
    return ApprovalSummary(
        step_number=int(step_number),
        required_parties=[role.value for role in parties],
        approved=states,
        missing=[name for name, ok in states.items() if not ok],
    )
