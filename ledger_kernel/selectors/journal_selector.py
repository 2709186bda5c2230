"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only queries over journal entries and lines: entry
    listings, per-account net activity, and a balance sweep over posted
    entries.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/dtos.py and selectors/base.py.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - Every query is scoped to one owner.
    - Activity is derived from posted lines only; drafts never count.

Failure modes:
    - Returns empty results on absence of data (never raises).

Audit relevance:
    ``verify_posted_balance`` is the detective control for the balance
    invariant: a non-empty result means a posted entry was altered outside
    the journal engine.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from ledger_kernel.domain.dtos import EntrySnapshot
from ledger_kernel.models.journal import JournalEntry, JournalLine, format_entry_number
from ledger_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0.00")


@dataclass(frozen=True)
class BalanceViolation:
    """A posted entry whose stored lines do not balance."""

    entry_id: UUID
    display_number: str
    total_debits: Decimal
    total_credits: Decimal
    line_count: int


class JournalSelector(BaseSelector[JournalEntry]):
    """
    Selector for journal entry queries.

    Guarantees:
        - Entries are returned as EntrySnapshot, ordered by entry number.
        - Lines are eagerly loaded and ordered by line_number.

    Non-goals:
        - No period or aging reports.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def list_entries(
        self,
        owner_id: UUID,
        posted: bool | None = None,
    ) -> list[EntrySnapshot]:
        """
        List an owner's entries.

        Args:
            owner_id: Ledger owner.
            posted: True for posted only, False for drafts only, None for all.
        """
        query = (
            select(JournalEntry)
            .options(selectinload(JournalEntry.lines))
            .where(JournalEntry.owner_id == owner_id)
            .order_by(JournalEntry.entry_number)
        )
        if posted is not None:
            query = query.where(JournalEntry.posted.is_(posted))

        entries = self.session.execute(query).scalars().all()
        return [EntrySnapshot.from_model(entry) for entry in entries]

    def account_activity(self, owner_id: UUID, account_code: str) -> Decimal:
        """Net posted activity on one account: sum(debit) - sum(credit)."""
        row = self.session.execute(
            select(
                func.sum(JournalLine.debit).label("debits"),
                func.sum(JournalLine.credit).label("credits"),
            )
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.owner_id == owner_id,
                JournalEntry.posted.is_(True),
                JournalLine.account_code == account_code,
            )
        ).one()
        debits = row.debits if row.debits is not None else _ZERO
        credits = row.credits if row.credits is not None else _ZERO
        return debits - credits

    def verify_posted_balance(self, owner_id: UUID) -> list[BalanceViolation]:
        """
        Posted entries that are unbalanced or have fewer than two lines.

        Should always return an empty list.
        """
        debit_sum = func.coalesce(func.sum(JournalLine.debit), 0)
        credit_sum = func.coalesce(func.sum(JournalLine.credit), 0)
        line_count = func.count(JournalLine.id)

        rows = self.session.execute(
            select(
                JournalEntry.id,
                JournalEntry.entry_number,
                debit_sum.label("debits"),
                credit_sum.label("credits"),
                line_count.label("line_count"),
            )
            .outerjoin(JournalLine, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.owner_id == owner_id,
                JournalEntry.posted.is_(True),
            )
            .group_by(JournalEntry.id, JournalEntry.entry_number)
            .having(or_(debit_sum != credit_sum, line_count < 2))
            .order_by(JournalEntry.entry_number)
        ).all()

        return [
            BalanceViolation(
                entry_id=row.id,
                display_number=format_entry_number(row.entry_number),
                total_debits=Decimal(row.debits if row.debits is not None else _ZERO),
                total_credits=Decimal(row.credits if row.credits is not None else _ZERO),
                line_count=row.line_count,
            )
            for row in rows
        ]
