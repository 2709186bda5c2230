"""
Accounts Receivable Domain Models (``ledger_modules.ar.models``).

Frozen snapshots returned by ``InvoiceService``.  No I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_modules.ar.orm import CreditNoteModel, InvoiceModel, InvoiceStatus


@dataclass(frozen=True)
class InvoiceItem:
    line_number: int
    account_code: str
    amount: Decimal
    description: str | None = None


@dataclass(frozen=True)
class Receipt:
    id: UUID
    amount: Decimal
    receipt_date: date
    journal_entry_id: UUID


@dataclass(frozen=True)
class CreditNote:
    id: UUID
    invoice_id: UUID
    credit_note_number: str
    amount: Decimal
    credit_date: date
    reason: str
    journal_entry_id: UUID

    @classmethod
    def from_model(cls, note: CreditNoteModel) -> CreditNote:
        return cls(
            id=note.id,
            invoice_id=note.invoice_id,
            credit_note_number=note.credit_note_number,
            amount=note.amount,
            credit_date=note.credit_date,
            reason=note.reason,
            journal_entry_id=note.journal_entry_id,
        )


@dataclass(frozen=True)
class Invoice:
    """A customer invoice and its settlement position."""

    id: UUID
    owner_id: UUID
    customer_name: str
    invoice_number: str
    invoice_date: date
    due_date: date
    amount: Decimal
    paid_amount: Decimal
    credited_amount: Decimal
    status: InvoiceStatus
    items: tuple[InvoiceItem, ...]
    receipts: tuple[Receipt, ...] = ()
    credit_notes: tuple[CreditNote, ...] = ()
    journal_entry_id: UUID | None = None
    void_reason: str | None = None

    @property
    def outstanding(self) -> Decimal:
        return self.amount - self.paid_amount - self.credited_amount

    @classmethod
    def from_model(cls, invoice: InvoiceModel) -> Invoice:
        return cls(
            id=invoice.id,
            owner_id=invoice.owner_id,
            customer_name=invoice.customer_name,
            invoice_number=invoice.invoice_number,
            invoice_date=invoice.invoice_date,
            due_date=invoice.due_date,
            amount=invoice.amount,
            paid_amount=invoice.paid_amount,
            credited_amount=invoice.credited_amount,
            status=InvoiceStatus(invoice.status),
            items=tuple(
                InvoiceItem(i.line_number, i.account_code, i.amount, i.description)
                for i in sorted(invoice.items, key=lambda i: i.line_number)
            ),
            receipts=tuple(
                Receipt(r.id, r.amount, r.receipt_date, r.journal_entry_id)
                for r in invoice.receipts
            ),
            credit_notes=tuple(CreditNote.from_model(n) for n in invoice.credit_notes),
            journal_entry_id=invoice.journal_entry_id,
            void_reason=invoice.void_reason,
        )
