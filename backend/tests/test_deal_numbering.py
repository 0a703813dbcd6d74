from datetime import datetime

from tradeflow import models
from tradeflow.services.deal_numbering import format_deal_number, next_deal_number


def test_format_pads_sequence():
    assert format_deal_number(year=2026, seq=1) == "HT-2026-0001"
    assert format_deal_number(year=2026, seq=12345) == "HT-2026-12345"


def test_sequence_increments_and_resets_per_year(db_session):
    jan = datetime(2026, 1, 5)

    first = next_deal_number(db_session, now=jan)
    second = next_deal_number(db_session, now=jan)
    db_session.commit()
    next_year = next_deal_number(db_session, now=datetime(2027, 1, 1))
    db_session.commit()

    assert (first.seq, second.seq) == (1, 2)
    assert second.formatted == "HT-2026-0002"
    assert next_year.formatted == "HT-2027-0001"

    rows = {r.year: r.last_seq for r in db_session.query(models.DealNumberSequence).all()}
    assert rows == {2026: 2, 2027: 1}
