"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and journal lines -- the
    single source of financial truth in this system.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Entry number uniqueness per owner (uq_journal_owner_number).
    - Line shape: both amounts >= 0 and exactly one of them > 0
      (CHECK constraint ck_journal_line_one_sided).
    - Balance: sum(debit) == sum(credit) for every posted entry (checked by
      JournalService before the posting compare-and-set; is_balanced is the
      read-side assertion).
    - Immutability: once posted, header and lines are frozen (ORM listeners
      in db/immutability.py).  The reversal link is the single field that
      may change afterwards, exactly once, via compare-and-set.

Failure modes:
    - IntegrityError on duplicate entry number or malformed line.
    - ImmutableEntryError on UPDATE/DELETE of a posted entry or its lines.

Audit relevance:
    JournalEntry and JournalLine rows are the authoritative financial record.
    Every audit, replay, and reporting query derives from these rows.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from ledger_kernel.db.types import MoneyAmount

ENTRY_NUMBER_PREFIX = "JE"


def format_entry_number(entry_number: int) -> str:
    """Display form of an entry number, e.g. JE-000042."""
    return f"{ENTRY_NUMBER_PREFIX}-{entry_number:06d}"


class JournalEntry(TrackedBase):
    """
    An atomic accounting transaction.

    Contract:
        A draft (posted=False) may be edited freely and may be unbalanced.
        Posting flips ``posted`` exactly once; afterwards nothing but the
        reversal link changes.

    Guarantees:
        - entry_number is unique per owner and never reused.
        - reverses_id / reversed_by_id link a reversal pair both ways.
        - lines are ordered by line_number.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("owner_id", "entry_number", name="uq_journal_owner_number"),
        Index("idx_journal_owner_date", "owner_id", "entry_date"),
        Index("idx_journal_posted", "posted"),
        Index("idx_journal_source", "source_type", "source_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    entry_number: Mapped[int] = mapped_column(BigInteger, nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    description: Mapped[str] = mapped_column(String(4000), nullable=False)

    posted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    posted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Entry this one reverses
    reverses_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Entry that reversed this one
    reversed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Subsidiary document that produced the entry (e.g. "ap_bill")
    source_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="JournalLine.line_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        state = "posted" if self.posted else "draft"
        return f"<JournalEntry {self.display_number} {state}>"

    @property
    def display_number(self) -> str:
        return format_entry_number(self.entry_number)

    @property
    def is_reversed(self) -> bool:
        return self.reversed_by_id is not None

    @property
    def total_debits(self) -> Decimal:
        """Sum of all debit line amounts."""
        return sum((line.debit for line in self.lines), Decimal("0.00"))

    @property
    def total_credits(self) -> Decimal:
        """Sum of all credit line amounts."""
        return sum((line.credit for line in self.lines), Decimal("0.00"))

    @property
    def is_balanced(self) -> bool:
        """Read-side convenience; posting uses integer minor-unit sums."""
        return self.total_debits == self.total_credits


class JournalLine(TrackedBase):
    """
    One leg of a journal entry.

    Contract:
        Exactly one of debit/credit is non-zero and both are >= 0.  Owned
        exclusively by its entry; deleted only with its draft entry or by
        removing it from a draft.
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        CheckConstraint("debit >= 0 AND credit >= 0", name="ck_journal_line_non_negative"),
        CheckConstraint(
            "(debit > 0 AND credit = 0) OR (debit = 0 AND credit > 0)",
            name="ck_journal_line_one_sided",
        ),
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_code"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    account_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("accounts.code"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    debit: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=Decimal("0"))

    credit: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False, default=Decimal("0"))

    cost_center_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<JournalLine {self.account_code} Dr {self.debit} Cr {self.credit}>"

    @property
    def signed_amount(self) -> Decimal:
        """Debits positive, credits negative."""
        return self.debit - self.credit
