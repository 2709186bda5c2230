"""
Accounts Receivable Module Service (``ledger_modules.ar.service``).

Responsibility
--------------
Customer invoice lifecycle: create (draft), issue (posts Dr AR / Cr
revenue), receive payment (posts Dr Cash / Cr AR), credit (posts Dr
revenue / Cr AR under a CN-YYYY-NNNN number), and void (reverses the
issue entry).

Architecture position
---------------------
**Modules layer** -- thin glue over the kernel.  ``InvoiceService`` is the
sole public entry point for AR operations.

Invariants enforced
-------------------
* Each public method runs in a savepoint and owns the transaction
  boundary (``commit`` on success, ``rollback`` on exception).
* paid_amount + credited_amount never exceeds amount (OverpaymentError,
  plus a CHECK).
* Credit note numbers come from a per-owner, per-year locked counter and
  are never reused.
* Status moves only along ``INVOICE_TRANSITIONS``.

Failure modes
-------------
* ``DocumentNotFoundError`` for an invoice of another owner.
* ``InvalidTransitionError`` for a disallowed status change.
* ``OverpaymentError`` for a receipt or credit above the outstanding
  balance.

Audit relevance
---------------
Every journal entry carries ``source_type="ar_invoice"`` and the invoice id.
Invoice, invoice item, receipt and credit note rows are audited
(``ar_invoices``, ``ar_invoice_items``, ``ar_receipts``,
``ar_credit_notes``) in the same savepoint as the change.
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
from ledger_kernel.exceptions import DuplicateCodeError, InvalidTransitionError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_log import AuditOperation
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.sequence_service import SequenceService
from ledger_modules._documents import (
    DocumentItem,
    DocumentService,
    positive_amount,
    require_transition,
    totals_by_account,
)
from ledger_modules.ar.models import CreditNote, Invoice
from ledger_modules.ar.orm import (
    CreditNoteModel,
    InvoiceItemModel,
    InvoiceModel,
    InvoiceStatus,
    ReceiptModel,
)
from ledger_modules.exceptions import DocumentNotFoundError, OverpaymentError

logger = get_logger("modules.ar.service")

SOURCE_TYPE = "ar_invoice"
_DOCUMENT = "invoice"

INVOICE_TRANSITIONS: dict[str, frozenset[str]] = {
    InvoiceStatus.DRAFT.value: frozenset(
        {InvoiceStatus.ISSUED.value, InvoiceStatus.VOID.value}
    ),
    InvoiceStatus.ISSUED.value: frozenset(
        {InvoiceStatus.PARTIALLY_PAID.value, InvoiceStatus.PAID.value, InvoiceStatus.VOID.value}
    ),
    InvoiceStatus.PARTIALLY_PAID.value: frozenset(
        {InvoiceStatus.PARTIALLY_PAID.value, InvoiceStatus.PAID.value}
    ),
    InvoiceStatus.PAID.value: frozenset(),
    InvoiceStatus.VOID.value: frozenset(),
}


def invoice_snapshot(invoice: InvoiceModel) -> dict[str, Any]:
    return {
        "customer_name": invoice.customer_name,
        "invoice_number": invoice.invoice_number,
        "invoice_date": invoice.invoice_date,
        "due_date": invoice.due_date,
        "amount": invoice.amount,
        "paid_amount": invoice.paid_amount,
        "credited_amount": invoice.credited_amount,
        "status": invoice.status,
        "journal_entry_id": invoice.journal_entry_id,
        "void_reason": invoice.void_reason,
    }


def invoice_item_snapshot(item: InvoiceItemModel) -> dict[str, Any]:
    return {
        "invoice_id": item.invoice_id,
        "line_number": item.line_number,
        "account_code": item.account_code,
        "description": item.description,
        "amount": item.amount,
    }


def receipt_snapshot(receipt: ReceiptModel) -> dict[str, Any]:
    return {
        "invoice_id": receipt.invoice_id,
        "amount": receipt.amount,
        "receipt_date": receipt.receipt_date,
        "journal_entry_id": receipt.journal_entry_id,
    }


def credit_note_snapshot(note: CreditNoteModel) -> dict[str, Any]:
    return {
        "invoice_id": note.invoice_id,
        "credit_note_number": note.credit_note_number,
        "amount": note.amount,
        "credit_date": note.credit_date,
        "reason": note.reason,
        "journal_entry_id": note.journal_entry_id,
    }


def format_credit_note_number(year: int, value: int) -> str:
    """Format as CN-YYYY-NNNN, e.g. CN-2026-0007."""
    return f"CN-{year}-{value:04d}"


class InvoiceService(DocumentService):
    """
    Customer invoices through the ledger.

    Contract
    --------
    * ``create_invoice`` and ``void_invoice`` need ``MANAGE_DOCUMENTS``;
      ledger effects also need the kernel's entry and posting permissions.
    * Control accounts (AR, cash) are passed in, normally from
      ``LedgerSettings.subledger``.

    Non-goals
    ---------
    * No customer master data, dunning or aging.
    """

    def __init__(
        self,
        session: Session,
        accounts_receivable_code: str,
        cash_code: str,
        clock: Clock | None = None,
        journal_service: JournalService | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, clock, journal_service, auto_commit)
        self._ar_code = accounts_receivable_code
        self._cash_code = cash_code
        self._sequences = SequenceService(session)

    @classmethod
    def from_settings(cls, session: Session, settings, clock: Clock | None = None, **kwargs):
        return cls(
            session,
            accounts_receivable_code=settings.subledger.accounts_receivable,
            cash_code=settings.subledger.cash,
            clock=clock,
            **kwargs,
        )

    def _load(
        self,
        ctx: RequestContext,
        invoice_id: UUID,
        for_update: bool = False,
    ) -> InvoiceModel:
        stmt = (
            select(InvoiceModel)
            .where(InvoiceModel.id == invoice_id, InvoiceModel.owner_id == ctx.owner_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        invoice = self._session.execute(stmt).scalar_one_or_none()
        if invoice is None:
            raise DocumentNotFoundError(_DOCUMENT, str(invoice_id))
        return invoice

    def get_invoice(self, ctx: RequestContext, invoice_id: UUID) -> Invoice:
        return Invoice.from_model(self._load(ctx, invoice_id))

    def _reject_overpayment(
        self,
        invoice: InvoiceModel,
        amount: Decimal,
        event: str,
    ) -> None:
        outstanding = invoice.outstanding
        if amount > outstanding:
            logger.warning(
                event,
                extra={
                    "invoice_id": str(invoice.id),
                    "amount": str(amount),
                    "outstanding": str(outstanding),
                },
            )
            raise OverpaymentError(_DOCUMENT, str(invoice.id), amount, outstanding)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        ctx: RequestContext,
        customer_name: str,
        invoice_number: str,
        invoice_date: date,
        due_date: date,
        items: Sequence[DocumentItem],
    ) -> Invoice:
        """
        Record a DRAFT invoice.  No ledger effect.

        Raises:
            DuplicateCodeError: invoice_number already used by this owner.
            ValueError: No items, or due_date before invoice_date.
        """
        return self._run("create_invoice", ctx, lambda: self._create_invoice(
            ctx, customer_name, invoice_number, invoice_date, due_date, items,
        ))

    def _create_invoice(
        self, ctx, customer_name, invoice_number, invoice_date, due_date, items,
    ) -> Invoice:
        require_permission(ctx, Permission.MANAGE_DOCUMENTS)
        if not items:
            raise ValueError("An invoice needs at least one item")
        if due_date < invoice_date:
            raise ValueError(f"due_date {due_date} is before invoice_date {invoice_date}")
        existing = self._session.execute(
            select(InvoiceModel.id).where(
                InvoiceModel.owner_id == ctx.owner_id,
                InvoiceModel.invoice_number == invoice_number,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateCodeError(invoice_number)

        for code in sorted({item.account_code for item in items}):
            self._journal._accounts.get_account(code)

        amount = sum((total for _, total in totals_by_account(items)), Decimal("0.00"))
        invoice = InvoiceModel(
            owner_id=ctx.owner_id,
            customer_name=customer_name,
            invoice_number=invoice_number,
            invoice_date=invoice_date,
            due_date=due_date,
            amount=amount,
            paid_amount=Decimal("0.00"),
            credited_amount=Decimal("0.00"),
            status=InvoiceStatus.DRAFT.value,
            created_by_id=ctx.actor_id,
            items=[
                InvoiceItemModel(
                    line_number=i,
                    account_code=item.account_code,
                    description=item.description,
                    amount=item.amount,
                    created_by_id=ctx.actor_id,
                )
                for i, item in enumerate(items, start=1)
            ],
        )
        self._session.add(invoice)
        self._session.flush()
        self._auditor.record(
            ctx,
            AuditorService.AR_INVOICES,
            invoice.id,
            AuditOperation.INSERT,
            after=invoice_snapshot(invoice),
        )
        for item in invoice.items:
            self._auditor.record(
                ctx,
                AuditorService.AR_INVOICE_ITEMS,
                item.id,
                AuditOperation.INSERT,
                after=invoice_item_snapshot(item),
            )
        logger.info(
            "ar_invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice_number,
                "amount": str(amount),
            },
        )
        return Invoice.from_model(invoice)

    def issue_invoice(self, ctx: RequestContext, invoice_id: UUID) -> Invoice:
        """Post Dr AR / Cr revenue (per account) and mark the invoice issued."""
        return self._run("issue_invoice", ctx, lambda: self._issue_invoice(ctx, invoice_id))

    def _issue_invoice(self, ctx: RequestContext, invoice_id: UUID) -> Invoice:
        invoice = self._load(ctx, invoice_id, for_update=True)
        require_transition(
            _DOCUMENT, str(invoice.id), invoice.status, InvoiceStatus.ISSUED.value,
            INVOICE_TRANSITIONS,
        )

        lines = [
            LineSpec.debit_line(self._ar_code, invoice.amount, memo=invoice.customer_name)
        ]
        lines.extend(
            LineSpec.credit_line(code, total, memo=f"Invoice {invoice.invoice_number}")
            for code, total in totals_by_account(invoice.items)
        )
        entry = self._journal.create_balanced_entry(
            ctx,
            invoice.invoice_date,
            f"Invoice {invoice.invoice_number} to {invoice.customer_name}",
            lines,
            source_type=SOURCE_TYPE,
            source_id=invoice.id,
        )
        self._journal.post(ctx, entry.id)

        before = invoice_snapshot(invoice)
        invoice.journal_entry_id = entry.id
        invoice.status = InvoiceStatus.ISSUED.value
        invoice.updated_by_id = ctx.actor_id
        self._session.flush()
        self._auditor.record(
            ctx,
            AuditorService.AR_INVOICES,
            invoice.id,
            AuditOperation.UPDATE,
            before=before,
            after=invoice_snapshot(invoice),
        )
        logger.info(
            "ar_invoice_issued",
            extra={"invoice_id": str(invoice.id), "entry_id": str(entry.id)},
        )
        return Invoice.from_model(invoice)

    def receive_payment(
        self,
        ctx: RequestContext,
        invoice_id: UUID,
        amount: Decimal,
        payment_date: date,
    ) -> Invoice:
        """
        Post Dr Cash / Cr AR for a customer payment.

        Raises:
            OverpaymentError: amount exceeds the outstanding balance.
        """
        return self._run("receive_payment", ctx, lambda: self._receive_payment(
            ctx, invoice_id, amount, payment_date,
        ))

    def _receive_payment(self, ctx, invoice_id, amount, payment_date) -> Invoice:
        receipt_amount = positive_amount(amount)
        invoice = self._load(ctx, invoice_id, for_update=True)
        target = (
            InvoiceStatus.PAID.value
            if receipt_amount == invoice.outstanding
            else InvoiceStatus.PARTIALLY_PAID.value
        )
        require_transition(
            _DOCUMENT, str(invoice.id), invoice.status, target, INVOICE_TRANSITIONS
        )
        self._reject_overpayment(invoice, receipt_amount, "ar_receipt_rejected_overpayment")

        entry = self._journal.create_balanced_entry(
            ctx,
            payment_date,
            f"Receipt for invoice {invoice.invoice_number} from {invoice.customer_name}",
            [
                LineSpec.debit_line(self._cash_code, receipt_amount),
                LineSpec.credit_line(self._ar_code, receipt_amount),
            ],
            source_type=SOURCE_TYPE,
            source_id=invoice.id,
        )
        self._journal.post(ctx, entry.id)

        before = invoice_snapshot(invoice)
        receipt = ReceiptModel(
            amount=receipt_amount,
            receipt_date=payment_date,
            journal_entry_id=entry.id,
            created_by_id=ctx.actor_id,
        )
        invoice.receipts.append(receipt)
        invoice.paid_amount = invoice.paid_amount + receipt_amount
        invoice.status = target
        invoice.updated_by_id = ctx.actor_id
        self._session.flush()
        self._auditor.record(
            ctx,
            AuditorService.AR_RECEIPTS,
            receipt.id,
            AuditOperation.INSERT,
            after=receipt_snapshot(receipt),
        )
        self._auditor.record(
            ctx,
            AuditorService.AR_INVOICES,
            invoice.id,
            AuditOperation.UPDATE,
            before=before,
            after=invoice_snapshot(invoice),
        )
        logger.info(
            "ar_payment_received",
            extra={
                "invoice_id": str(invoice.id),
                "entry_id": str(entry.id),
                "amount": str(receipt_amount),
                "status": target,
            },
        )
        return Invoice.from_model(invoice)

    def issue_credit_note(
        self,
        ctx: RequestContext,
        invoice_id: UUID,
        amount: Decimal,
        credit_date: date,
        reason: str,
    ) -> CreditNote:
        """
        Credit part or all of an issued invoice.

        Posts Dr revenue (the invoice's first item account) / Cr AR.  The
        invoice becomes ``paid`` once nothing is outstanding.

        Raises:
            OverpaymentError: amount exceeds the outstanding balance.
            InvalidTransitionError: invoice is draft, paid or void.
        """
        return self._run("issue_credit_note", ctx, lambda: self._issue_credit_note(
            ctx, invoice_id, amount, credit_date, reason,
        ))

    def _issue_credit_note(self, ctx, invoice_id, amount, credit_date, reason) -> CreditNote:
        credit_amount = positive_amount(amount)
        invoice = self._load(ctx, invoice_id, for_update=True)
        require_transition(
            _DOCUMENT, str(invoice.id), invoice.status, InvoiceStatus.PAID.value,
            INVOICE_TRANSITIONS, reason="only issued invoices can be credited",
        )
        self._reject_overpayment(invoice, credit_amount, "ar_credit_rejected_overpayment")

        revenue_code = sorted(invoice.items, key=lambda i: i.line_number)[0].account_code
        number = format_credit_note_number(
            credit_date.year,
            self._sequences.next_value(
                SequenceService.credit_note_sequence(ctx.owner_id, credit_date.year)
            ),
        )
        entry = self._journal.create_balanced_entry(
            ctx,
            credit_date,
            f"Credit note {number} for invoice {invoice.invoice_number}: {reason}",
            [
                LineSpec.debit_line(revenue_code, credit_amount, memo=number),
                LineSpec.credit_line(self._ar_code, credit_amount, memo=number),
            ],
            source_type=SOURCE_TYPE,
            source_id=invoice.id,
        )
        self._journal.post(ctx, entry.id)

        before = invoice_snapshot(invoice)
        note = CreditNoteModel(
            owner_id=ctx.owner_id,
            credit_note_number=number,
            amount=credit_amount,
            credit_date=credit_date,
            reason=reason,
            journal_entry_id=entry.id,
            created_by_id=ctx.actor_id,
        )
        invoice.credit_notes.append(note)
        invoice.credited_amount = invoice.credited_amount + credit_amount
        if invoice.outstanding == 0:
            invoice.status = InvoiceStatus.PAID.value
        invoice.updated_by_id = ctx.actor_id
        self._session.flush()
        self._auditor.record(
            ctx,
            AuditorService.AR_CREDIT_NOTES,
            note.id,
            AuditOperation.INSERT,
            after=credit_note_snapshot(note),
            reason=reason,
        )
        self._auditor.record(
            ctx,
            AuditorService.AR_INVOICES,
            invoice.id,
            AuditOperation.UPDATE,
            before=before,
            after=invoice_snapshot(invoice),
        )
        logger.info(
            "ar_credit_note_issued",
            extra={
                "invoice_id": str(invoice.id),
                "credit_note_number": number,
                "amount": str(credit_amount),
                "entry_id": str(entry.id),
            },
        )
        return CreditNote.from_model(note)

    def void_invoice(
        self,
        ctx: RequestContext,
        invoice_id: UUID,
        void_date: date,
        reason: str,
    ) -> Invoice:
        """
        Void an invoice.

        A draft is voided with no ledger effect.  An issued invoice with no
        receipts or credit notes has its issue entry reversed on
        ``void_date``.

        Raises:
            InvalidTransitionError: invoice has receipts or credits, or is void.
        """
        return self._run("void_invoice", ctx, lambda: self._void_invoice(
            ctx, invoice_id, void_date, reason,
        ))

    def _void_invoice(self, ctx, invoice_id, void_date, reason) -> Invoice:
        require_permission(ctx, Permission.MANAGE_DOCUMENTS)
        invoice = self._load(ctx, invoice_id, for_update=True)
        require_transition(
            _DOCUMENT, str(invoice.id), invoice.status, InvoiceStatus.VOID.value,
            INVOICE_TRANSITIONS, reason="invoices with receipts cannot be voided",
        )
        if invoice.credited_amount > 0:
            logger.warning(
                "document_transition_rejected",
                extra={"document_type": _DOCUMENT, "document_id": str(invoice.id)},
            )
            raise InvalidTransitionError(
                _DOCUMENT, str(invoice.id), invoice.status, InvoiceStatus.VOID.value,
                reason="invoices with credit notes cannot be voided",
            )
        before = invoice_snapshot(invoice)

        if invoice.journal_entry_id is not None:
            self._reversals.reverse(
                ctx,
                invoice.journal_entry_id,
                void_date,
                f"Void invoice {invoice.invoice_number}: {reason}",
            )

        invoice.status = InvoiceStatus.VOID.value
        invoice.void_reason = reason
        invoice.updated_by_id = ctx.actor_id
        self._session.flush()
        self._auditor.record(
            ctx,
            AuditorService.AR_INVOICES,
            invoice.id,
            AuditOperation.UPDATE,
            before=before,
            after=invoice_snapshot(invoice),
            reason=reason,
        )
        logger.info("ar_invoice_voided", extra={"invoice_id": str(invoice.id), "reason": reason})
        return Invoice.from_model(invoice)
