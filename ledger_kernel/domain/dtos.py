"""
DTOs -- Immutable data transfer objects returned by kernel services.

Responsibility:
    Defines the frozen snapshots that cross the service boundary
    (AccountInfo, FiscalPeriodInfo, EntrySnapshot, LineSnapshot), the
    LineSpec input used by subsidiary documents, and the UpsertResult
    that reports which branch of an idempotent create was taken.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` converters are
    boundary helpers invoked only from the service layer.

Invariants enforced:
    - Services return DTOs, never live ORM entities.
    - LineSpec rejects negative or two-sided amounts at construction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from ledger_kernel.models.account import AccountType, NormalBalance
from ledger_kernel.models.fiscal_period import PeriodStatus

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.fiscal_period import FiscalPeriod as FiscalPeriodModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel
    from ledger_kernel.models.journal import JournalLine as JournalLineModel

_ZERO = Decimal("0")


class UpsertOutcome(str, Enum):
    """Which branch an upsert took."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class UpsertResult:
    """
    Result of an idempotent create.

    ``key`` identifies the row (account code, period name); ``record_id``
    is the id of the created or pre-existing row.
    """

    outcome: UpsertOutcome
    key: str
    record_id: UUID

    @property
    def created(self) -> bool:
        return self.outcome == UpsertOutcome.CREATED


@dataclass(frozen=True)
class AccountInfo:
    """Immutable snapshot of a chart-of-accounts entry."""

    id: UUID
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    is_active: bool

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            code=model.code,
            name=model.name,
            account_type=AccountType(model.account_type),
            normal_balance=NormalBalance(model.normal_balance),
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class FiscalPeriodInfo:
    """
    Immutable snapshot of a fiscal period.

    Non-goals:
        - Does NOT enforce period locks (PeriodService does that).
    """

    id: UUID
    owner_id: UUID
    name: str
    start_date: date
    end_date: date
    status: PeriodStatus
    fiscal_year: int | None = None
    period_number: int | None = None
    closed_at: datetime | None = None
    closed_by_id: UUID | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_locked(self) -> bool:
        return self.status in (PeriodStatus.CLOSED, PeriodStatus.LOCKED)

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    @classmethod
    def from_model(cls, model: FiscalPeriodModel) -> FiscalPeriodInfo:
        return cls(
            id=model.id,
            owner_id=model.owner_id,
            name=model.name,
            start_date=model.start_date,
            end_date=model.end_date,
            status=PeriodStatus(model.status),
            fiscal_year=model.fiscal_year,
            period_number=model.period_number,
            closed_at=model.closed_at,
            closed_by_id=model.closed_by_id,
        )


@dataclass(frozen=True)
class LineSpec:
    """
    One requested journal line, as supplied by a subsidiary document.

    Contract:
        Exactly one of ``debit``/``credit`` is positive; the other is zero.

    Raises:
        ValueError: On negative, zero, or two-sided amounts.
    """

    account_code: str
    debit: Decimal = _ZERO
    credit: Decimal = _ZERO
    cost_center_id: str | None = None
    memo: str | None = None

    def __post_init__(self) -> None:
        if self.debit < 0 or self.credit < 0:
            raise ValueError("LineSpec amounts must be >= 0")
        if (self.debit > 0) == (self.credit > 0):
            raise ValueError("LineSpec needs exactly one of debit or credit")

    @classmethod
    def debit_line(
        cls,
        account_code: str,
        amount: Decimal,
        cost_center_id: str | None = None,
        memo: str | None = None,
    ) -> LineSpec:
        return cls(account_code, debit=amount, cost_center_id=cost_center_id, memo=memo)

    @classmethod
    def credit_line(
        cls,
        account_code: str,
        amount: Decimal,
        cost_center_id: str | None = None,
        memo: str | None = None,
    ) -> LineSpec:
        return cls(account_code, credit=amount, cost_center_id=cost_center_id, memo=memo)


@dataclass(frozen=True)
class LineSnapshot:
    """Immutable snapshot of one journal line."""

    id: UUID
    line_number: int
    account_code: str
    debit: Decimal
    credit: Decimal
    cost_center_id: str | None = None
    memo: str | None = None

    @property
    def signed_amount(self) -> Decimal:
        return self.debit - self.credit

    @classmethod
    def from_model(cls, model: JournalLineModel) -> LineSnapshot:
        return cls(
            id=model.id,
            line_number=model.line_number,
            account_code=model.account_code,
            debit=model.debit,
            credit=model.credit,
            cost_center_id=model.cost_center_id,
            memo=model.memo,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "line_number": self.line_number,
            "account_code": self.account_code,
            "debit": str(self.debit),
            "credit": str(self.credit),
            "cost_center_id": self.cost_center_id,
            "memo": self.memo,
        }


@dataclass(frozen=True)
class EntrySnapshot:
    """
    Read-only view of a journal entry and its ordered lines.

    Guarantees:
        - ``lines`` is ordered by line_number.
        - Decoupled from the session; safe to hand to any consumer.
    """

    id: UUID
    owner_id: UUID
    entry_number: int
    display_number: str
    entry_date: date
    description: str
    posted: bool
    lines: tuple[LineSnapshot, ...]
    posted_at: datetime | None = None
    posted_by_id: UUID | None = None
    reverses_id: UUID | None = None
    reversed_by_id: UUID | None = None
    source_type: str | None = None
    source_id: UUID | None = None

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0.00"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0.00"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    @property
    def is_reversed(self) -> bool:
        return self.reversed_by_id is not None

    @classmethod
    def from_model(cls, model: JournalEntryModel) -> EntrySnapshot:
        return cls(
            id=model.id,
            owner_id=model.owner_id,
            entry_number=model.entry_number,
            display_number=model.display_number,
            entry_date=model.entry_date,
            description=model.description,
            posted=model.posted,
            lines=tuple(
                LineSnapshot.from_model(line)
                for line in sorted(model.lines, key=lambda l: l.line_number)
            ),
            posted_at=model.posted_at,
            posted_by_id=model.posted_by_id,
            reverses_id=model.reverses_id,
            reversed_by_id=model.reversed_by_id,
            source_type=model.source_type,
            source_id=model.source_id,
        )

    def header_dict(self) -> dict[str, Any]:
        """JSON-ready header fields, used for audit snapshots."""
        return {
            "id": str(self.id),
            "owner_id": str(self.owner_id),
            "entry_number": self.entry_number,
            "entry_date": self.entry_date.isoformat(),
            "description": self.description,
            "posted": self.posted,
            "reverses_id": str(self.reverses_id) if self.reverses_id else None,
            "reversed_by_id": str(self.reversed_by_id) if self.reversed_by_id else None,
            "source_type": self.source_type,
            "source_id": str(self.source_id) if self.source_id else None,
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.header_dict()
        data["lines"] = [line.to_dict() for line in self.lines]
        return data


@dataclass(frozen=True)
class ReversalResult:
    """Outcome of reversing a posted entry."""

    original_entry_id: UUID
    reversal_entry_id: UUID
    reversal_entry_number: int
    reversal_date: date
    reason: str
