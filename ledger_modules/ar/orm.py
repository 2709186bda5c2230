"""
Accounts Receivable ORM Models (``ledger_modules.ar.orm``).

Responsibility
--------------
SQLAlchemy persistence for customer invoices, their revenue items, the
receipts applied to them, and credit notes.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``.
MUST NOT be imported by ``ledger_kernel``.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString


class InvoiceStatus(str, Enum):
    """Invoice workflow states."""

    DRAFT = "draft"
    ISSUED = "issued"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    VOID = "void"


class InvoiceModel(TrackedBase):
    """
    ORM model for a customer invoice.

    Guarantees:
        - invoice_number is unique per owner (uq_ar_invoice_owner_number).
        - paid_amount + credited_amount never exceeds amount
          (ck_ar_invoice_settled_range).
        - journal_entry_id is set once the invoice is issued.
    """

    __tablename__ = "ar_invoices"

    __table_args__ = (
        UniqueConstraint("owner_id", "invoice_number", name="uq_ar_invoice_owner_number"),
        CheckConstraint(
            "paid_amount >= 0 AND credited_amount >= 0 "
            "AND paid_amount + credited_amount <= amount",
            name="ck_ar_invoice_settled_range",
        ),
        CheckConstraint("due_date >= invoice_date", name="ck_ar_invoice_due_after_invoice"),
        Index("idx_ar_invoice_owner_status", "owner_id", "status"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    credited_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.DRAFT.value
    )
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id"), nullable=True
    )
    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    items: Mapped[list["InvoiceItemModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceItemModel.line_number",
    )
    receipts: Mapped[list["ReceiptModel"]] = relationship(
        back_populates="invoice",
        lazy="selectin",
        order_by="ReceiptModel.receipt_date",
    )
    credit_notes: Mapped[list["CreditNoteModel"]] = relationship(
        back_populates="invoice",
        lazy="selectin",
        order_by="CreditNoteModel.credit_note_number",
    )

    @property
    def outstanding(self) -> Decimal:
        return self.amount - self.paid_amount - self.credited_amount

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.invoice_number} {self.status} {self.amount}>"


class InvoiceItemModel(TrackedBase):
    """One revenue line of an invoice."""

    __tablename__ = "ar_invoice_items"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ar_invoice_item_positive"),
        Index("idx_ar_invoice_item_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ar_invoices.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_code: Mapped[str] = mapped_column(
        String(50), ForeignKey("accounts.code"), nullable=False
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped[InvoiceModel] = relationship(back_populates="items")


class ReceiptModel(TrackedBase):
    """A customer payment applied to one invoice."""

    __tablename__ = "ar_receipts"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ar_receipt_positive"),
        Index("idx_ar_receipt_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ar_invoices.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)
    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id"), nullable=False
    )

    invoice: Mapped[InvoiceModel] = relationship(back_populates="receipts")


class CreditNoteModel(TrackedBase):
    """
    A credit note against one invoice.

    Guarantees:
        - credit_note_number (CN-YYYY-NNNN) is unique per owner.
    """

    __tablename__ = "ar_credit_notes"

    __table_args__ = (
        UniqueConstraint(
            "owner_id", "credit_note_number", name="uq_ar_credit_note_owner_number"
        ),
        CheckConstraint("amount > 0", name="ck_ar_credit_note_positive"),
        Index("idx_ar_credit_note_invoice", "invoice_id"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ar_invoices.id"), nullable=False
    )
    credit_note_number: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    credit_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id"), nullable=False
    )

    invoice: Mapped[InvoiceModel] = relationship(back_populates="credit_notes")
