"""
Accounts payable: bill lifecycle and its ledger effects.
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.context import Role
from ledger_kernel.exceptions import (
    DuplicateCodeError,
    InvalidTransitionError,
    PeriodLockedError,
    PermissionDeniedError,
    UnknownAccountError,
)
from ledger_modules._documents import DocumentItem
from ledger_modules.ap import BillStatus
from ledger_modules.exceptions import DocumentNotFoundError, OverpaymentError

TODAY = date(2026, 10, 15)
DUE = date(2026, 11, 14)

PRINT_RUN = (
    DocumentItem("5100", Decimal("300.00"), "Offset printing"),
    DocumentItem("5200", Decimal("150.00"), "Launch ads"),
    DocumentItem("5200", Decimal("50.00"), "Bookmarks"),
)


@pytest.fixture
def draft_bill(bill_service, author_ctx, standard_accounts, current_period):
    return bill_service.create_bill(author_ctx, "Acme Print", "INV-881", TODAY, DUE, PRINT_RUN)


@pytest.fixture
def approved_bill(bill_service, moderator_ctx, draft_bill):
    return bill_service.approve_bill(moderator_ctx, draft_bill.id)


class TestCreateBill:

    def test_draft_has_no_ledger_effect(self, orchestrator, owner_id, draft_bill):
        assert draft_bill.status == BillStatus.DRAFT
        assert draft_bill.amount == Decimal("500.00")
        assert draft_bill.outstanding == Decimal("500.00")
        assert [i.line_number for i in draft_bill.items] == [1, 2, 3]
        assert draft_bill.journal_entry_id is None
        assert orchestrator.list_entries(owner_id) == []

    def test_duplicate_number_rejected(self, bill_service, author_ctx, draft_bill):
        with pytest.raises(DuplicateCodeError):
            bill_service.create_bill(author_ctx, "Acme Print", "INV-881", TODAY, DUE, PRINT_RUN)

    def test_unknown_item_account_rejected(self, bill_service, author_ctx, standard_accounts):
        with pytest.raises(UnknownAccountError):
            bill_service.create_bill(
                author_ctx, "Acme", "X-1", TODAY, DUE, [DocumentItem("9999", Decimal("1.00"))]
            )

    def test_due_before_bill_date_rejected(self, bill_service, author_ctx, standard_accounts):
        with pytest.raises(ValueError):
            bill_service.create_bill(author_ctx, "Acme", "X-2", TODAY, date(2026, 10, 1), PRINT_RUN)

    def test_empty_bill_rejected(self, bill_service, author_ctx, standard_accounts):
        with pytest.raises(ValueError):
            bill_service.create_bill(author_ctx, "Acme", "X-3", TODAY, DUE, [])

    def test_reader_cannot_create(self, bill_service, reader_ctx, standard_accounts):
        with pytest.raises(PermissionDeniedError):
            bill_service.create_bill(reader_ctx, "Acme", "X-4", TODAY, DUE, PRINT_RUN)

    def test_item_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            DocumentItem("5100", Decimal("0"))

    def test_other_owner_cannot_see_bill(self, bill_service, make_ctx, other_owner_id, draft_bill):
        with pytest.raises(DocumentNotFoundError):
            bill_service.get_bill(make_ctx(Role.MODERATOR, owner=other_owner_id), draft_bill.id)


class TestApproveBill:

    def test_posts_expense_against_payable(self, orchestrator, owner_id, approved_bill):
        entry = orchestrator.get_entry(owner_id, approved_bill.journal_entry_id)

        assert approved_bill.status == BillStatus.APPROVED
        assert entry.posted is True
        assert entry.source_type == "ap_bill"
        assert entry.source_id == approved_bill.id
        # Items on the same account are combined
        assert [(l.account_code, l.debit, l.credit) for l in entry.lines] == [
            ("5100", Decimal("300.00"), Decimal("0.00")),
            ("5200", Decimal("200.00"), Decimal("0.00")),
            ("2000", Decimal("0.00"), Decimal("500.00")),
        ]

    def test_approve_twice_rejected(self, bill_service, moderator_ctx, approved_bill):
        with pytest.raises(InvalidTransitionError) as exc_info:
            bill_service.approve_bill(moderator_ctx, approved_bill.id)

        assert exc_info.value.current_status == "approved"

    def test_author_cannot_approve(self, bill_service, author_ctx, orchestrator, owner_id, draft_bill):
        with pytest.raises(PermissionDeniedError):
            bill_service.approve_bill(author_ctx, draft_bill.id)

        assert bill_service.get_bill(author_ctx, draft_bill.id).status == BillStatus.DRAFT
        assert orchestrator.list_entries(owner_id) == []

    def test_closed_period_blocks_approval(
        self, bill_service, orchestrator, admin_ctx, moderator_ctx, owner_id, current_period, draft_bill
    ):
        orchestrator.close_period(admin_ctx, current_period.id)

        with pytest.raises(PeriodLockedError):
            bill_service.approve_bill(moderator_ctx, draft_bill.id)

        assert bill_service.get_bill(moderator_ctx, draft_bill.id).status == BillStatus.DRAFT
        assert orchestrator.list_entries(owner_id) == []


class TestBillPayments:

    def test_partial_then_full_payment(
        self, bill_service, orchestrator, moderator_ctx, owner_id, approved_bill
    ):
        partial = bill_service.record_payment(moderator_ctx, approved_bill.id, Decimal("200.00"), TODAY)

        assert partial.status == BillStatus.PARTIALLY_PAID
        assert partial.outstanding == Decimal("300.00")
        assert orchestrator.selector.account_activity(owner_id, "2000") == Decimal("-300.00")
        assert orchestrator.selector.account_activity(owner_id, "1000") == Decimal("-200.00")

        paid = bill_service.record_payment(moderator_ctx, approved_bill.id, Decimal("300.00"), TODAY)

        assert paid.status == BillStatus.PAID
        assert paid.outstanding == Decimal("0.00")
        assert len(paid.payments) == 2
        assert orchestrator.selector.account_activity(owner_id, "2000") == Decimal("0.00")

    def test_overpayment_rejected(self, bill_service, orchestrator, moderator_ctx, owner_id, approved_bill):
        with pytest.raises(OverpaymentError) as exc_info:
            bill_service.record_payment(moderator_ctx, approved_bill.id, Decimal("500.01"), TODAY)

        assert exc_info.value.outstanding == Decimal("500.00")
        assert len(orchestrator.list_entries(owner_id)) == 1

    def test_draft_bill_cannot_be_paid(self, bill_service, moderator_ctx, draft_bill):
        with pytest.raises(InvalidTransitionError):
            bill_service.record_payment(moderator_ctx, draft_bill.id, Decimal("10.00"), TODAY)


class TestVoidBill:

    def test_void_draft(self, bill_service, orchestrator, moderator_ctx, owner_id, draft_bill):
        voided = bill_service.void_bill(moderator_ctx, draft_bill.id, TODAY, "duplicate")

        assert voided.status == BillStatus.VOID
        assert voided.void_reason == "duplicate"
        assert orchestrator.list_entries(owner_id) == []

    def test_void_approved_reverses_entry(
        self, bill_service, orchestrator, moderator_ctx, owner_id, approved_bill
    ):
        bill_service.void_bill(moderator_ctx, approved_bill.id, TODAY, "wrong vendor")

        original = orchestrator.get_entry(owner_id, approved_bill.journal_entry_id)
        assert original.is_reversed
        reversal = orchestrator.get_entry(owner_id, original.reversed_by_id)
        assert "Void bill INV-881: wrong vendor" in reversal.description
        assert orchestrator.selector.account_activity(owner_id, "2000") == Decimal("0.00")
        assert orchestrator.selector.account_activity(owner_id, "5100") == Decimal("0.00")

    def test_bill_with_payments_cannot_be_voided(self, bill_service, moderator_ctx, approved_bill):
        bill_service.record_payment(moderator_ctx, approved_bill.id, Decimal("500.00"), TODAY)

        with pytest.raises(InvalidTransitionError) as exc_info:
            bill_service.void_bill(moderator_ctx, approved_bill.id, TODAY, "too late")

        assert exc_info.value.current_status == "paid"
        assert exc_info.value.reason == "bills with payments cannot be voided"
