"""
Module: ledger_kernel.models.fiscal_period
Responsibility: ORM persistence for fiscal periods -- the date gates that
    decide whether an entry date accepts postings.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Periods of one owner never overlap (checked by PeriodService at
      creation; the name is unique per owner here).
    - Status moves OPEN -> CLOSED -> LOCKED.  The only backward move is the
      privileged, audited CLOSED -> OPEN reopen.

Failure modes:
    - IntegrityError on duplicate (owner_id, name).

Audit relevance:
    Each transition stamps the acting user and time; every transition is
    also written to the audit log by PeriodService.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Date, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class PeriodStatus(str, Enum):
    """Lifecycle status of a fiscal period."""

    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


class FiscalPeriod(TrackedBase):
    """
    Fiscal period for one owner's ledger.

    Contract:
        A period whose status is CLOSED or LOCKED refuses postings dated
        inside it.  A date covered by no period is treated as locked.

    Guarantees:
        - (owner_id, name) is unique.
        - start_date <= end_date (enforced by the service layer).

    Non-goals:
        - Overlap detection is a service-layer query, not a constraint.
    """

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_period_owner_name"),
        Index("idx_period_owner_dates", "owner_id", "start_date", "end_date"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # e.g. "2026-10"
    name: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(20),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    fiscal_year: Mapped[int | None] = mapped_column(Integer, nullable=True)

    period_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reopened_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reopened_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<FiscalPeriod {self.name}: {self.status}>"

    @property
    def is_open(self) -> bool:
        """Check if period accepts postings."""
        return self.status == PeriodStatus.OPEN

    @property
    def is_locked(self) -> bool:
        """Closed and locked periods both refuse postings."""
        return self.status in (PeriodStatus.CLOSED, PeriodStatus.LOCKED)

    def contains_date(self, check_date: date) -> bool:
        """Check if a date falls within this period (inclusive)."""
        return self.start_date <= check_date <= self.end_date
