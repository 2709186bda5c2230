"""
Accounts Payable ORM Models (``ledger_modules.ap.orm``).

Responsibility
--------------
SQLAlchemy persistence for vendor bills, their expense items, and the
payments made against them.

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


class BillStatus(str, Enum):
    """Bill workflow states."""

    DRAFT = "draft"
    APPROVED = "approved"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    VOID = "void"


class BillModel(TrackedBase):
    """
    ORM model for a vendor bill.

    Guarantees:
        - bill_number is unique per owner (uq_ap_bill_owner_number).
        - 0 <= paid_amount <= amount (ck_ap_bill_paid_range).
        - journal_entry_id is set once the bill is approved.
    """

    __tablename__ = "ap_bills"

    __table_args__ = (
        UniqueConstraint("owner_id", "bill_number", name="uq_ap_bill_owner_number"),
        CheckConstraint(
            "paid_amount >= 0 AND paid_amount <= amount",
            name="ck_ap_bill_paid_range",
        ),
        CheckConstraint("due_date >= bill_date", name="ck_ap_bill_due_after_bill"),
        Index("idx_ap_bill_owner_status", "owner_id", "status"),
    )

    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    vendor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bill_number: Mapped[str] = mapped_column(String(100), nullable=False)
    bill_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BillStatus.DRAFT.value
    )
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id"), nullable=True
    )
    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    items: Mapped[list["BillItemModel"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BillItemModel.line_number",
    )
    payments: Mapped[list["BillPaymentModel"]] = relationship(
        back_populates="bill",
        lazy="selectin",
        order_by="BillPaymentModel.payment_date",
    )

    @property
    def outstanding(self) -> Decimal:
        return self.amount - self.paid_amount

    def __repr__(self) -> str:
        return f"<BillModel {self.bill_number} {self.status} {self.amount}>"


class BillItemModel(TrackedBase):
    """One expense line of a bill."""

    __tablename__ = "ap_bill_items"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ap_bill_item_positive"),
        Index("idx_ap_bill_item_bill", "bill_id"),
    )

    bill_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ap_bills.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_code: Mapped[str] = mapped_column(
        String(50), ForeignKey("accounts.code"), nullable=False
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    bill: Mapped[BillModel] = relationship(back_populates="items")


class BillPaymentModel(TrackedBase):
    """A payment applied to one bill, with its posted journal entry."""

    __tablename__ = "ap_bill_payments"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ap_bill_payment_positive"),
        Index("idx_ap_bill_payment_bill", "bill_id"),
    )

    bill_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ap_bills.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id"), nullable=False
    )

    bill: Mapped[BillModel] = relationship(back_populates="payments")
