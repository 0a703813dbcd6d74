from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tradeflow import models
from tradeflow.core.timeutil import utc_now

DEAL_NUMBER_PREFIX = "HT"


@dataclass(frozen=True)
class DealNumber:
    year: int
    seq: int
    formatted: str


def format_deal_number(*, year: int, seq: int, prefix: str = DEAL_NUMBER_PREFIX) -> str:
    """Format: HT-2026-0001 (sequence resets each year, 1-based)."""

    return f"{prefix}-{int(year)}-{int(seq):04d}"


def next_deal_number(
    db: Session,
    *,
    now: datetime | None = None,
    max_retries: int = 5,
) -> DealNumber:
    """Allocate the next yearly deal number from ``deal_number_sequences``.

    The increment is a single UPDATE, which locks the counter row (PostgreSQL)
    or the database (SQLite) until the caller's transaction ends, so two
    concurrent creations never receive the same sequence. Creating the year's
    row races on the unique ``year`` constraint; the loser retries.
    """

    now = now or utc_now()
    year = int(now.year)

    for _ in range(max_retries):
        bumped = db.execute(
            update(models.DealNumberSequence)
            .where(models.DealNumberSequence.year == year)
            .values(last_seq=models.DealNumberSequence.last_seq + 1)
            .execution_options(synchronize_session=False)
        ).rowcount

        if not bumped:
            try:
                with db.begin_nested():
                    db.add(models.DealNumberSequence(year=year, last_seq=1))
            except IntegrityError:
                continue

        seq = (
            db.query(models.DealNumberSequence.last_seq)
            .filter(models.DealNumberSequence.year == year)
            .scalar()
        )
        seq = int(seq)
        return DealNumber(year=year, seq=seq, formatted=format_deal_number(year=year, seq=seq))

    raise RuntimeError(f"Could not allocate deal number for year={year}")
