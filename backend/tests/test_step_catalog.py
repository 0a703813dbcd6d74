import pytest

from tradeflow.models import DocumentType, PartyRole
from tradeflow.services.step_catalog import (
    PHASES,
    STEP_CATALOG,
    TOTAL_STEPS,
    RoleAuthorizer,
    document_types_for,
    is_valid_step,
    required_parties,
    step_info,
    step_label,
    steps_by_phase,
)


def test_catalog_has_twelve_contiguous_steps():
    assert TOTAL_STEPS == 12
    assert [e.number for e in STEP_CATALOG] == list(range(1, 13))


def test_step_info_outside_range_is_none():
    assert step_info(0) is None
    assert step_info(13) is None
    assert step_info("abc") is None
    assert not is_valid_step(-1)


def test_step_label_falls_back_to_number():
    assert step_label(6) == "SPA Countersign"
    assert step_label(42) == "Step 42"


def test_required_parties_match_workflow_table():
    b, s, k = PartyRole.BUYER, PartyRole.SELLER, PartyRole.BROKER
    expected = {
        1: (b, s, k),
        2: (b,),
        3: (s,),
        4: (b,),
        5: (s,),
        6: (b, s),
        7: (b, s),
        8: (s,),
        9: (b,),
        10: (b, s),
        11: (s,),
        12: (k,),
    }
    for number, parties in expected.items():
        assert required_parties(number) == parties
    assert required_parties(99) == ()


def test_steps_grouped_by_phase_in_order():
    grouped = steps_by_phase()
    assert list(grouped) == list(PHASES)
    assert [e.number for e in grouped["PRE-TRADE"]] == [1, 2, 3, 4]
    assert [e.number for e in grouped["AGREEMENT"]] == [5, 6]
    assert [e.number for e in grouped["VERIFICATION"]] == [7, 8, 9]
    assert [e.number for e in grouped["SETTLEMENT"]] == [10, 11, 12]


def test_step_one_documents():
    assert tuple(document_types_for(1)) == (DocumentType.NCNDA, DocumentType.IMFPA)
    assert tuple(document_types_for(12)) == ()


@pytest.mark.parametrize(
    "role,step,expected",
    [
        (PartyRole.BUYER, 2, True),
        (PartyRole.SELLER, 2, False),
        (PartyRole.BROKER, 2, False),
        (PartyRole.BROKER, 1, True),
        (PartyRole.SELLER, 6, True),
        (None, 6, False),
    ],
)
def test_can_act(role, step, expected):
    assert RoleAuthorizer.can_act(role, step) is expected


def test_can_mark_complete_for_broker_or_sole_party():
    assert RoleAuthorizer.can_mark_complete(PartyRole.BROKER, 6)
    assert RoleAuthorizer.can_mark_complete(PartyRole.BUYER, 2)
    assert not RoleAuthorizer.can_mark_complete(PartyRole.BUYER, 6)
    assert not RoleAuthorizer.can_mark_complete(PartyRole.SELLER, 2)
    assert not RoleAuthorizer.can_mark_complete(PartyRole.BROKER, 13)
