"""Static definition of the 12-step deal workflow.

The catalog is read-only and shared by every other workflow component. Steps
are grouped into four phases; ordering within a phase follows step number.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from tradeflow.models.domain import DocumentType, PartyRole

TOTAL_STEPS = 12

PHASE_PRE_TRADE = "PRE-TRADE"
PHASE_AGREEMENT = "AGREEMENT"
PHASE_VERIFICATION = "VERIFICATION"
PHASE_SETTLEMENT = "SETTLEMENT"

PHASES: tuple[str, ...] = (
    PHASE_PRE_TRADE,
    PHASE_AGREEMENT,
    PHASE_VERIFICATION,
    PHASE_SETTLEMENT,
)


@dataclass(frozen=True)
class StepCatalogEntry:
    number: int
    name: str
    phase: str
    description: str
    required_parties: tuple[PartyRole, ...]
    required_documents: tuple[DocumentType, ...]


_B = PartyRole.BUYER
_S = PartyRole.SELLER
_K = PartyRole.BROKER

STEP_CATALOG: tuple[StepCatalogEntry, ...] = (
    StepCatalogEntry(
        1,
        "NCNDA / IMFPA",
        PHASE_PRE_TRADE,
        "Non-circumvention, non-disclosure and fee protection agreements",
        (_B, _S, _K),
        (DocumentType.NCNDA, DocumentType.IMFPA),
    ),
    StepCatalogEntry(
        2,
        "ICPO",
        PHASE_PRE_TRADE,
        "Irrevocable corporate purchase order from the buyer",
        (_B,),
        (DocumentType.ICPO,),
    ),
    StepCatalogEntry(
        3,
        "Seller's SCO",
        PHASE_PRE_TRADE,
        "Soft corporate offer issued by the seller",
        (_S,),
        (DocumentType.SCO,),
    ),
    StepCatalogEntry(
        4,
        "Buyer Signs SCO",
        PHASE_PRE_TRADE,
        "Buyer countersigns the soft corporate offer",
        (_B,),
        (DocumentType.SCO,),
    ),
    StepCatalogEntry(
        5,
        "SPA Draft",
        PHASE_AGREEMENT,
        "Seller drafts the sale and purchase agreement",
        (_S,),
        (DocumentType.SPA,),
    ),
    StepCatalogEntry(
        6,
        "SPA Countersign",
        PHASE_AGREEMENT,
        "Both parties sign the sale and purchase agreement",
        (_B, _S),
        (DocumentType.SPA,),
    ),
    StepCatalogEntry(
        7,
        "Bank Readiness",
        PHASE_VERIFICATION,
        "Proof of funds and proof of product exchanged between banks",
        (_B, _S),
        (DocumentType.POF_MT799, DocumentType.POP_TSA),
    ),
    StepCatalogEntry(
        8,
        "DTA",
        PHASE_VERIFICATION,
        "Dip test authorization issued by the seller",
        (_S,),
        (DocumentType.DTA,),
    ),
    StepCatalogEntry(
        9,
        "Dip Test / Q&Q",
        PHASE_VERIFICATION,
        "Quality and quantity inspection at the storage location",
        (_B,),
        (DocumentType.INSPECTION_REPORT,),
    ),
    StepCatalogEntry(
        10,
        "Payment & Title",
        PHASE_SETTLEMENT,
        "Payment by MT103 and transfer of title",
        (_B, _S),
        (DocumentType.PAYMENT_MT103, DocumentType.TITLE_TRANSFER),
    ),
    StepCatalogEntry(
        11,
        "Lift / Delivery",
        PHASE_SETTLEMENT,
        "Product lifted or delivered against the bill of lading",
        (_S,),
        (DocumentType.BILL_OF_LADING,),
    ),
    StepCatalogEntry(
        12,
        "Commission",
        PHASE_SETTLEMENT,
        "Broker commission settled",
        (_K,),
        (),
    ),
)

_BY_NUMBER: dict[int, StepCatalogEntry] = {entry.number: entry for entry in STEP_CATALOG}


def step_info(step_number: int) -> StepCatalogEntry | None:
    """Catalog entry for ``step_number``; ``None`` outside 1..12."""

    try:
        return _BY_NUMBER.get(int(step_number))
    except (TypeError, ValueError):
        return None


def step_label(step_number: int) -> str:
    entry = step_info(step_number)
    return entry.name if entry else f"Step {step_number}"


def steps_by_phase() -> dict[str, list[StepCatalogEntry]]:
    grouped: dict[str, list[StepCatalogEntry]] = {phase: [] for phase in PHASES}
    for entry in STEP_CATALOG:
        grouped[entry.phase].append(entry)
    return grouped


def required_parties(step_number: int) -> tuple[PartyRole, ...]:
    entry = step_info(step_number)
    return entry.required_parties if entry else ()


def is_valid_step(step_number: int) -> bool:
    return step_info(step_number) is not None


class RoleAuthorizer:
    """Answers who may act on, and who may directly complete, a step."""

    @staticmethod
    def can_act(role: PartyRole | None, step_number: int) -> bool:
        if role is None:
            return False
        return role in required_parties(step_number)

    @staticmethod
    def can_mark_complete(role: PartyRole | None, step_number: int) -> bool:
        if role is None or not is_valid_step(step_number):
            return False
        if role == PartyRole.BROKER:
            return True
        parties = required_parties(step_number)
        return len(parties) == 1 and parties[0] == role


def document_types_for(step_number: int) -> Iterable[DocumentType]:
    entry = step_info(step_number)
    return entry.required_documents if entry else ()
