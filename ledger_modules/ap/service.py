"""
Accounts Payable Module Service (``ledger_modules.ap.service``).

Responsibility
--------------
Vendor bill lifecycle: create (draft), approve (posts Dr expense / Cr AP),
pay (posts Dr AP / Cr Cash), and void (reverses the approval entry).

Architecture position
---------------------
**Modules layer** -- thin glue over the kernel.  ``BillService`` is the
sole public entry point for AP operations.  Journal entries are built with
``JournalService.create_balanced_entry`` and posted with
``JournalService.post``; voids go through ``ReversalService``.

Invariants enforced
-------------------
* Each public method runs in a savepoint and owns the transaction
  boundary (``commit`` on success, ``rollback`` on exception).
* The bill row and its journal entry change in the same transaction.
* paid_amount never exceeds amount (OverpaymentError, plus a CHECK).
* Status moves only along ``BILL_TRANSITIONS``.

Failure modes
-------------
* ``DocumentNotFoundError`` for a bill of another owner.
* ``InvalidTransitionError`` for a disallowed status change.
* ``OverpaymentError`` for a payment above the outstanding balance.
* Any kernel error from posting (e.g. ``PeriodLockedError``) propagates
  after rollback.

Audit relevance
---------------
Every journal entry carries ``source_type="ap_bill"`` and the bill id.
Bill, bill item and bill payment rows are audited (``ap_bills``,
``ap_bill_items``, ``ap_bill_payments``) in the same savepoint as the
change.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.context import Permission, RequestContext, require_permission
from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.exceptions import DuplicateCodeError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_log import AuditOperation
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.journal_service import JournalService
from ledger_modules._documents import (
    DocumentItem,
    DocumentService,
    positive_amount,
    require_transition,
    totals_by_account,
)
from ledger_modules.ap.models import Bill
from ledger_modules.ap.orm import BillItemModel, BillModel, BillPaymentModel, BillStatus
from ledger_modules.exceptions import DocumentNotFoundError, OverpaymentError

logger = get_logger("modules.ap.service")

SOURCE_TYPE = "ap_bill"
_DOCUMENT = "bill"

BILL_TRANSITIONS: dict[str, frozenset[str]] = {
    BillStatus.DRAFT.value: frozenset({BillStatus.APPROVED.value, BillStatus.VOID.value}),
    BillStatus.APPROVED.value: frozenset(
        {BillStatus.PARTIALLY_PAID.value, BillStatus.PAID.value, BillStatus.VOID.value}
    ),
    BillStatus.PARTIALLY_PAID.value: frozenset(
        {BillStatus.PARTIALLY_PAID.value, BillStatus.PAID.value}
    ),
    BillStatus.PAID.value: frozenset(),
    BillStatus.VOID.value: frozenset(),
}


def bill_snapshot(bill: BillModel) -> dict[str, Any]:
    return {
        "vendor_name": bill.vendor_name,
        "bill_number": bill.bill_number,
        "bill_date": bill.bill_date,
        "due_date": bill.due_date,
        "amount": bill.amount,
        "paid_amount": bill.paid_amount,
        "status": bill.status,
        "journal_entry_id": bill.journal_entry_id,
        "void_reason": bill.void_reason,
    }


def bill_item_snapshot(item: BillItemModel) -> dict[str, Any]:
    return {
        "bill_id": item.bill_id,
        "line_number": item.line_number,
        "account_code": item.account_code,
        "description": item.description,
        "amount": item.amount,
    }


def bill_payment_snapshot(payment: BillPaymentModel) -> dict[str, Any]:
    return {
        "bill_id": payment.bill_id,
        "amount": payment.amount,
        "payment_date": payment.payment_date,
        "journal_entry_id": payment.journal_entry_id,
    }


class BillService(DocumentService):
    """
    Vendor bills through the ledger.

    Contract
    --------
    * ``create_bill`` needs ``MANAGE_DOCUMENTS``; approving and paying also
      need the kernel's entry and posting permissions.
    * Control accounts (AP, cash) are passed in, normally from
      ``LedgerSettings.subledger``.

    Non-goals
    ---------
    * No vendor master data, aging or payment runs.
    """

    def __init__(
        self,
        session: Session,
        accounts_payable_code: str,
        cash_code: str,
        clock: Clock | None = None,
        journal_service: JournalService | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, journal_service, auto_commit)
        self._ap_code = accounts_payable_code
        self._cash_code = cash_code

    @classmethod
    def from_settings(cls, session: Session, settings, clock: Clock | None = None, **kwargs):
        return cls(
            session,
            accounts_payable_code=settings.subledger.accounts_payable,
            cash_code=settings.subledger.cash,
            clock=clock,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self, ctx: RequestContext, bill_id: UUID, for_update: bool = False) -> BillModel:
        stmt = (
            select(BillModel)
            .where(BillModel.id == bill_id, BillModel.owner_id == ctx.owner_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        bill = self._session.execute(stmt).scalar_one_or_none()
        if bill is None:
            raise DocumentNotFoundError(_DOCUMENT, str(bill_id))
        return bill

    def get_bill(self, ctx: RequestContext, bill_id: UUID) -> Bill:
        return Bill.from_model(self._load(ctx, bill_id))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_bill(
        self,
        ctx: RequestContext,
        vendor_name: str,
        bill_number: str,
        bill_date: date,
        due_date: date,
        items: Sequence[DocumentItem],
    ) -> Bill:
        """
        Record a DRAFT bill.  No ledger effect.

        Raises:
            DuplicateCodeError: bill_number already used by this owner.
            ValueError: No items, or due_date before bill_date.
        """
        return self._run("create_bill", ctx, lambda: self._create_bill(
            ctx, vendor_name, bill_number, bill_date, due_date, items,
        ))

    def _create_bill(self, ctx, vendor_name, bill_number, bill_date, due_date, items) -> Bill:
        require_permission(ctx, Permission.MANAGE_DOCUMENTS)
        if not items:
            raise ValueError("A bill needs at least one item")
        if due_date < bill_date:
            raise ValueError(f"due_date {due_date} is before bill_date {bill_date}")
        existing = self._session.execute(
            select(BillModel.id).where(
                BillModel.owner_id == ctx.owner_id,
                BillModel.bill_number == bill_number,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateCodeError(bill_number)

        # Existence only; active status is checked when the bill posts
        for code in sorted({item.account_code for item in items}):
            self._journal._accounts.get_account(code)

        amount = sum((total for _, total in totals_by_account(items)), Decimal("0.00"))
        bill = BillModel(
            owner_id=ctx.owner_id,
            vendor_name=vendor_name,
            bill_number=bill_number,
            bill_date=bill_date,
            due_date=due_date,
            amount=amount,
            paid_amount=Decimal("0.00"),
            status=BillStatus.DRAFT.value,
            created_by_id=ctx.actor_id,
            items=[
                BillItemModel(
                    line_number=i,
                    account_code=item.account_code,
                    description=item.description,
                    amount=item.amount,
                    created_by_id=ctx.actor_id,
                )
                for i, item in enumerate(items, start=1)
            ],
        )
        self._session.add(bill)
        self._session.flush()
        self._auditor.record(
            ctx, AuditorService.AP_BILLS, bill.id, AuditOperation.INSERT, after=bill_snapshot(bill)
        )
        for item in bill.items:
            self._auditor.record(
                ctx,
                AuditorService.AP_BILL_ITEMS,
                item.id,
                AuditOperation.INSERT,
                after=bill_item_snapshot(item),
            )
        logger.info(
            "ap_bill_created",
            extra={"bill_id": str(bill.id), "bill_number": bill_number, "amount": str(amount)},
        )
        return Bill.from_model(bill)

    def approve_bill(self, ctx: RequestContext, bill_id: UUID) -> Bill:
        """Post Dr expense (per account) / Cr AP and mark the bill approved."""
        return self._run("approve_bill", ctx, lambda: self._approve_bill(ctx, bill_id))

    def _approve_bill(self, ctx: RequestContext, bill_id: UUID) -> Bill:
        bill = self._load(ctx, bill_id, for_update=True)
        require_transition(
            _DOCUMENT, str(bill.id), bill.status, BillStatus.APPROVED.value, BILL_TRANSITIONS
        )

        lines = [
            LineSpec.debit_line(code, total, memo=f"Bill {bill.bill_number}")
            for code, total in totals_by_account(bill.items)
        ]
        lines.append(LineSpec.credit_line(self._ap_code, bill.amount, memo=bill.vendor_name))
        entry = self._journal.create_balanced_entry(
            ctx,
            bill.bill_date,
            f"Bill {bill.bill_number} from {bill.vendor_name}",
            lines,
            source_type=SOURCE_TYPE,
            source_id=bill.id,
        )
        self._journal.post(ctx, entry.id)

        before = bill_snapshot(bill)
        bill.journal_entry_id = entry.id
        bill.status = BillStatus.APPROVED.value
        bill.updated_by_id = ctx.actor_id
        self._session.flush()
        self._auditor.record(
            ctx,
            AuditorService.AP_BILLS,
            bill.id,
            AuditOperation.UPDATE,
            before=before,
            after=bill_snapshot(bill),
        )
        logger.info(
            "ap_bill_approved",
            extra={"bill_id": str(bill.id), "entry_id": str(entry.id)},
        )
        return Bill.from_model(bill)

    def record_payment(
        self,
        ctx: RequestContext,
        bill_id: UUID,
        amount: Decimal,
        payment_date: date,
    ) -> Bill:
        """
        Post Dr AP / Cr Cash for a payment against an approved bill.

        Raises:
            OverpaymentError: amount exceeds the outstanding balance.
        """
        return self._run("record_payment", ctx, lambda: self._record_payment(
            ctx, bill_id, amount, payment_date,
        ))

    def _record_payment(self, ctx, bill_id, amount, payment_date) -> Bill:
        payment_amount = positive_amount(amount)
        bill = self._load(ctx, bill_id, for_update=True)
        outstanding = bill.outstanding
        target = (
            BillStatus.PAID.value
            if payment_amount == outstanding
            else BillStatus.PARTIALLY_PAID.value
        )
        require_transition(_DOCUMENT, str(bill.id), bill.status, target, BILL_TRANSITIONS)
        if payment_amount > outstanding:
            logger.warning(
                "ap_payment_rejected_overpayment",
                extra={
                    "bill_id": str(bill.id),
                    "amount": str(payment_amount),
                    "outstanding": str(outstanding),
                },
            )
            raise OverpaymentError(_DOCUMENT, str(bill.id), payment_amount, outstanding)

        entry = self._journal.create_balanced_entry(
            ctx,
            payment_date,
            f"Payment of bill {bill.bill_number} to {bill.vendor_name}",
            [
                LineSpec.debit_line(self._ap_code, payment_amount),
                LineSpec.credit_line(self._cash_code, payment_amount),
            ],
            source_type=SOURCE_TYPE,
            source_id=bill.id,
        )
        self._journal.post(ctx, entry.id)

        before = bill_snapshot(bill)
        payment = BillPaymentModel(
            amount=payment_amount,
            payment_date=payment_date,
            journal_entry_id=entry.id,
            created_by_id=ctx.actor_id,
        )
        bill.payments.append(payment)
        bill.paid_amount = bill.paid_amount + payment_amount
        bill.status = target
        bill.updated_by_id = ctx.actor_id
        self._session.flush()
        self._auditor.record(
            ctx,
            AuditorService.AP_BILL_PAYMENTS,
            payment.id,
            AuditOperation.INSERT,
            after=bill_payment_snapshot(payment),
        )
        self._auditor.record(
            ctx,
            AuditorService.AP_BILLS,
            bill.id,
            AuditOperation.UPDATE,
            before=before,
            after=bill_snapshot(bill),
        )
        logger.info(
            "ap_bill_payment_recorded",
            extra={
                "bill_id": str(bill.id),
                "entry_id": str(entry.id),
                "amount": str(payment_amount),
                "status": target,
            },
        )
        return Bill.from_model(bill)

    def void_bill(
        self,
        ctx: RequestContext,
        bill_id: UUID,
        void_date: date,
        reason: str,
    ) -> Bill:
        """
        Void a bill.

        A draft is voided with no ledger effect.  An approved, unpaid bill
        has its approval entry reversed on ``void_date``.

        Raises:
            InvalidTransitionError: bill is paid, partially paid or void.
        """
        return self._run("void_bill", ctx, lambda: self._void_bill(ctx, bill_id, void_date, reason))

    def _void_bill(self, ctx, bill_id, void_date, reason) -> Bill:
        require_permission(ctx, Permission.MANAGE_DOCUMENTS)
        bill = self._load(ctx, bill_id, for_update=True)
        require_transition(
            _DOCUMENT, str(bill.id), bill.status, BillStatus.VOID.value, BILL_TRANSITIONS,
            reason="bills with payments cannot be voided",
        )
        before = bill_snapshot(bill)

        if bill.journal_entry_id is not None:
            self._reversals.reverse(
                ctx,
                bill.journal_entry_id,
                void_date,
                f"Void bill {bill.bill_number}: {reason}",
            )

        bill.status = BillStatus.VOID.value
        bill.void_reason = reason
        bill.updated_by_id = ctx.actor_id
        self._session.flush()
        self._auditor.record(
            ctx,
            AuditorService.AP_BILLS,
            bill.id,
            AuditOperation.UPDATE,
            before=before,
            after=bill_snapshot(bill),
            reason=reason,
        )
        logger.info("ap_bill_voided", extra={"bill_id": str(bill.id), "reason": reason})
        return Bill.from_model(bill)
