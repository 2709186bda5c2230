"""
Accounts Payable Domain Models (``ledger_modules.ap.models``).

Frozen snapshots returned by ``BillService``.  No I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_modules.ap.orm import BillModel, BillStatus


@dataclass(frozen=True)
class BillItem:
    line_number: int
    account_code: str
    amount: Decimal
    description: str | None = None


@dataclass(frozen=True)
class BillPayment:
    id: UUID
    amount: Decimal
    payment_date: date
    journal_entry_id: UUID


@dataclass(frozen=True)
class Bill:
    """A vendor bill and its payment position."""

    id: UUID
    owner_id: UUID
    vendor_name: str
    bill_number: str
    bill_date: date
    due_date: date
    amount: Decimal
    paid_amount: Decimal
    status: BillStatus
    items: tuple[BillItem, ...]
    payments: tuple[BillPayment, ...] = ()
    journal_entry_id: UUID | None = None
    void_reason: str | None = None

    @property
    def outstanding(self) -> Decimal:
        return self.amount - self.paid_amount

    @classmethod
    def from_model(cls, bill: BillModel) -> Bill:
        return cls(
            id=bill.id,
            owner_id=bill.owner_id,
            vendor_name=bill.vendor_name,
            bill_number=bill.bill_number,
            bill_date=bill.bill_date,
            due_date=bill.due_date,
            amount=bill.amount,
            paid_amount=bill.paid_amount,
            status=BillStatus(bill.status),
            items=tuple(
                BillItem(i.line_number, i.account_code, i.amount, i.description)
                for i in sorted(bill.items, key=lambda i: i.line_number)
            ),
            payments=tuple(
                BillPayment(p.id, p.amount, p.payment_date, p.journal_entry_id)
                for p in bill.payments
            ),
            journal_entry_id=bill.journal_entry_id,
            void_reason=bill.void_reason,
        )
