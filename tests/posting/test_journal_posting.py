"""
Posting pipeline: balance, line count, account and period guards, and
entry numbering.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.exceptions import (
    AlreadyPostedError,
    EntryNotFoundError,
    InvalidLineError,
    PeriodLockedError,
    PermissionDeniedError,
    UnbalancedEntryError,
    UnknownAccountError,
)
from ledger_kernel.models.audit_log import AuditOperation
from ledger_kernel.models.journal import format_entry_number
from ledger_kernel.services.auditor_service import AuditorService

TODAY = date(2026, 10, 15)


class TestPostBalancedEntry:

    def test_balanced_entry_posts(
        self, orchestrator, moderator_ctx, owner_id, test_actor_id,
        make_draft, standard_accounts, current_period,
    ):
        entry_id = make_draft([("1000", "100.00", None), ("3000", None, "100.00")])

        snapshot = orchestrator.post(moderator_ctx, entry_id)

        assert snapshot.posted is True
        assert snapshot.posted_by_id == test_actor_id
        assert snapshot.posted_at == datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)
        entry = orchestrator.get_entry(owner_id, entry_id)
        assert entry.posted is True
        assert [(l.account_code, l.debit, l.credit) for l in entry.lines] == [
            ("1000", Decimal("100.00"), Decimal("0.00")),
            ("3000", Decimal("0.00"), Decimal("100.00")),
        ]

    def test_many_lines_post(
        self, orchestrator, moderator_ctx, make_draft, standard_accounts, current_period
    ):
        entry_id = make_draft([
            ("5100", "60.25", None),
            ("5200", "39.75", None),
            ("1000", None, "70.00"),
            ("2000", None, "30.00"),
        ])
        snapshot = orchestrator.post(moderator_ctx, entry_id)

        assert snapshot.total_debits == Decimal("100.00")
        assert snapshot.is_balanced
        assert [l.line_number for l in snapshot.lines] == [1, 2, 3, 4]

    def test_post_is_audited(
        self, orchestrator, moderator_ctx, make_draft, standard_accounts, current_period
    ):
        entry_id = make_draft([("1000", "10.00", None), ("3000", None, "10.00")])
        orchestrator.post(moderator_ctx, entry_id)

        trail = orchestrator.auditor.trail_for(AuditorService.JOURNAL_ENTRIES, entry_id)
        assert trail.operations == (AuditOperation.INSERT, AuditOperation.POST)
        assert "posted" in trail.entries[1].changed_fields
        assert trail.entries[1].effective_role == "moderator"

    def test_post_twice_rejected(self, orchestrator, moderator_ctx, posted_entry):
        with pytest.raises(AlreadyPostedError) as exc_info:
            orchestrator.post(moderator_ctx, posted_entry.id)
        assert exc_info.value.entry_id == str(posted_entry.id)


class TestUnbalancedEntries:

    def test_difference_reported(
        self, orchestrator, moderator_ctx, owner_id, make_draft, standard_accounts, current_period
    ):
        entry_id = make_draft([("1000", "100.00", None), ("3000", None, "95.00")])

        with pytest.raises(UnbalancedEntryError) as exc_info:
            orchestrator.post(moderator_ctx, entry_id)

        assert exc_info.value.debits == Decimal("100.00")
        assert exc_info.value.credits == Decimal("95.00")
        assert exc_info.value.difference == Decimal("5.00")
        assert orchestrator.get_entry(owner_id, entry_id).posted is False

    def test_single_line_rejected(
        self, orchestrator, moderator_ctx, make_draft, standard_accounts, current_period
    ):
        entry_id = make_draft([("1000", "10.00", None)])

        with pytest.raises(UnbalancedEntryError) as exc_info:
            orchestrator.post(moderator_ctx, entry_id)
        assert exc_info.value.line_count == 1

    def test_empty_entry_rejected(
        self, orchestrator, moderator_ctx, make_draft, standard_accounts, current_period
    ):
        entry_id = make_draft([])

        with pytest.raises(UnbalancedEntryError) as exc_info:
            orchestrator.post(moderator_ctx, entry_id)
        assert exc_info.value.line_count == 0

    def test_rejection_logged(
        self, orchestrator, moderator_ctx, make_draft, standard_accounts, current_period,
        captured_logs,
    ):
        entry_id = make_draft([("1000", "1.00", None), ("3000", None, "2.00")])

        with pytest.raises(UnbalancedEntryError):
            orchestrator.post(moderator_ctx, entry_id)

        rejected = [r for r in captured_logs() if r["message"] == "post_rejected_unbalanced"]
        assert len(rejected) == 1
        assert rejected[0]["difference"] == "-1.00"
        assert rejected[0]["level"] == "WARNING"


class TestLineValidation:

    @pytest.mark.parametrize(
        "debit, credit",
        [
            ("10.00", "10.00"),
            (None, None),
            ("0.00", None),
            ("-5.00", None),
            ("1.005", None),
        ],
    )
    def test_invalid_amounts_rejected(
        self, orchestrator, author_ctx, standard_accounts, debit, credit
    ):
        entry_id = orchestrator.create_draft_entry(author_ctx, TODAY, "Bad line")

        with pytest.raises(InvalidLineError) as exc_info:
            orchestrator.add_line(
                author_ctx,
                entry_id,
                "1000",
                debit=Decimal(debit) if debit is not None else None,
                credit=Decimal(credit) if credit is not None else None,
            )
        assert exc_info.value.account_code == "1000"

    def test_float_amounts_rejected(self, orchestrator, author_ctx, standard_accounts):
        entry_id = orchestrator.create_draft_entry(author_ctx, TODAY, "Float line")

        with pytest.raises(InvalidLineError):
            orchestrator.add_line(author_ctx, entry_id, "1000", debit=10.1)

    def test_unknown_account_rejected_at_add(self, orchestrator, author_ctx, standard_accounts):
        entry_id = orchestrator.create_draft_entry(author_ctx, TODAY, "Typo")

        with pytest.raises(UnknownAccountError):
            orchestrator.add_line(author_ctx, entry_id, "1O00", debit=Decimal("1.00"))

    def test_line_keeps_cost_center_and_memo(
        self, orchestrator, author_ctx, owner_id, standard_accounts
    ):
        entry_id = orchestrator.create_draft_entry(author_ctx, TODAY, "Tagged")
        orchestrator.add_line(
            author_ctx, entry_id, "5200",
            debit=Decimal("12.50"), cost_center_id="CC-MKT", memo="Ad spend",
        )

        [line] = orchestrator.get_entry(owner_id, entry_id).lines
        assert line.cost_center_id == "CC-MKT"
        assert line.memo == "Ad spend"
        assert line.signed_amount == Decimal("12.50")


class TestPeriodGuard:

    def test_no_period_blocks_posting(
        self, orchestrator, moderator_ctx, make_draft, standard_accounts
    ):
        entry_id = make_draft([("1000", "10.00", None), ("3000", None, "10.00")])

        with pytest.raises(PeriodLockedError) as exc_info:
            orchestrator.post(moderator_ctx, entry_id)

        assert exc_info.value.period_name is None
        assert exc_info.value.period_status == "missing"

    def test_closed_period_blocks_posting(
        self, orchestrator, admin_ctx, moderator_ctx, owner_id,
        make_draft, standard_accounts, current_period,
    ):
        orchestrator.close_period(admin_ctx, current_period.id)
        entry_id = make_draft([("1000", "10.00", None), ("3000", None, "10.00")])

        with pytest.raises(PeriodLockedError) as exc_info:
            orchestrator.post(moderator_ctx, entry_id)

        assert exc_info.value.period_name == "2026-10"
        assert exc_info.value.period_status == "closed"
        assert exc_info.value.kind == "policy"
        assert orchestrator.get_entry(owner_id, entry_id).posted is False

    def test_locked_period_blocks_posting(
        self, orchestrator, admin_ctx, moderator_ctx, make_draft, standard_accounts, current_period
    ):
        orchestrator.close_period(admin_ctx, current_period.id)
        orchestrator.lock_period(admin_ctx, current_period.id)
        entry_id = make_draft([("1000", "10.00", None), ("3000", None, "10.00")])

        with pytest.raises(PeriodLockedError) as exc_info:
            orchestrator.post(moderator_ctx, entry_id)
        assert exc_info.value.period_status == "locked"

    def test_day_after_locked_period_posts(
        self, orchestrator, admin_ctx, author_ctx, moderator_ctx, owner_id,
        make_draft, standard_accounts, current_period,
    ):
        orchestrator.close_period(admin_ctx, current_period.id)
        orchestrator.lock_period(admin_ctx, current_period.id)
        entry_id = make_draft(
            [("1000", "10.00", None), ("3000", None, "10.00")], entry_date=current_period.end_date
        )
        with pytest.raises(PeriodLockedError):
            orchestrator.post(moderator_ctx, entry_id)

        next_day = current_period.end_date + timedelta(days=1)
        orchestrator.update_draft_entry(author_ctx, entry_id, entry_date=next_day)
        snapshot = orchestrator.post(moderator_ctx, entry_id)

        assert snapshot.posted is True
        assert snapshot.entry_date == date(2026, 11, 1)
        assert orchestrator.periods.get_period_for_date(owner_id, next_day).name == "2026-11"

    def test_reopened_period_accepts_posting(
        self, orchestrator, admin_ctx, moderator_ctx, make_draft, standard_accounts, current_period
    ):
        entry_id = make_draft([("1000", "10.00", None), ("3000", None, "10.00")])
        orchestrator.close_period(admin_ctx, current_period.id)
        orchestrator.reopen_period(admin_ctx, current_period.id, "late receipt")

        assert orchestrator.post(moderator_ctx, entry_id).posted is True

    def test_draft_may_be_dated_into_any_period(
        self, orchestrator, author_ctx, owner_id, standard_accounts
    ):
        entry_id = orchestrator.create_draft_entry(author_ctx, date(2019, 1, 1), "Old draft")
        assert orchestrator.get_entry(owner_id, entry_id).entry_date == date(2019, 1, 1)


class TestNumbering:

    def test_numbers_are_sequential_per_owner(
        self, orchestrator, author_ctx, make_ctx, owner_id, other_owner_id, standard_accounts
    ):
        first = orchestrator.create_draft_entry(author_ctx, TODAY, "one")
        second = orchestrator.create_draft_entry(author_ctx, TODAY, "two")
        other = orchestrator.create_draft_entry(
            make_ctx("author", owner=other_owner_id), TODAY, "other owner"
        )

        first_number = orchestrator.get_entry(owner_id, first).entry_number
        assert orchestrator.get_entry(owner_id, second).entry_number == first_number + 1
        assert orchestrator.get_entry(other_owner_id, other).entry_number == 1

    def test_deleted_draft_leaves_gap(self, orchestrator, author_ctx, owner_id):
        first = orchestrator.create_draft_entry(author_ctx, TODAY, "one")
        doomed = orchestrator.create_draft_entry(author_ctx, TODAY, "two")
        orchestrator.delete_draft_entry(author_ctx, doomed)
        third = orchestrator.create_draft_entry(author_ctx, TODAY, "three")

        assert orchestrator.get_entry(owner_id, first).entry_number == 1
        assert orchestrator.get_entry(owner_id, third).entry_number == 3

    def test_display_number(self, orchestrator, author_ctx, owner_id):
        entry_id = orchestrator.create_draft_entry(author_ctx, TODAY, "one")
        assert orchestrator.get_entry(owner_id, entry_id).display_number == "JE-000001"
        assert format_entry_number(42) == "JE-000042"


class TestOwnershipAndRoles:

    def test_other_owner_cannot_see_entry(
        self, orchestrator, make_ctx, other_owner_id, posted_entry
    ):
        with pytest.raises(EntryNotFoundError):
            orchestrator.get_entry(other_owner_id, posted_entry.id)

        with pytest.raises(EntryNotFoundError):
            orchestrator.post(make_ctx("moderator", owner=other_owner_id), posted_entry.id)

    def test_unknown_entry(self, orchestrator, moderator_ctx):
        with pytest.raises(EntryNotFoundError):
            orchestrator.post(moderator_ctx, uuid4())

    def test_reader_cannot_write(self, orchestrator, reader_ctx):
        with pytest.raises(PermissionDeniedError) as exc_info:
            orchestrator.create_draft_entry(reader_ctx, TODAY, "nope")
        assert exc_info.value.permission == "ledger.entry.write"

    def test_author_cannot_post(
        self, orchestrator, author_ctx, make_draft, standard_accounts, current_period
    ):
        entry_id = make_draft([("1000", "10.00", None), ("3000", None, "10.00")])

        with pytest.raises(PermissionDeniedError):
            orchestrator.post(author_ctx, entry_id)


class TestCreateBalancedEntry:

    def test_creates_draft_ready_to_post(
        self, orchestrator, author_ctx, moderator_ctx, standard_accounts, current_period
    ):
        source_id = uuid4()
        draft = orchestrator.create_balanced_entry(
            author_ctx,
            TODAY,
            "Royalty accrual",
            [
                LineSpec.debit_line("5200", Decimal("250.00"), memo="October"),
                LineSpec.credit_line("2000", Decimal("250.00")),
            ],
            source_type="manual",
            source_id=source_id,
        )

        assert draft.posted is False
        assert draft.source_type == "manual"
        assert draft.source_id == source_id
        assert orchestrator.post(moderator_ctx, draft.id).posted is True

    def test_unbalanced_specs_write_nothing(
        self, orchestrator, author_ctx, owner_id, standard_accounts
    ):
        with pytest.raises(UnbalancedEntryError):
            orchestrator.create_balanced_entry(
                author_ctx,
                TODAY,
                "Broken",
                [
                    LineSpec.debit_line("1000", Decimal("10.00")),
                    LineSpec.credit_line("3000", Decimal("9.99")),
                ],
            )

        assert orchestrator.list_entries(owner_id) == []

    def test_unknown_account_writes_nothing(self, orchestrator, author_ctx, owner_id, standard_accounts):
        with pytest.raises(UnknownAccountError):
            orchestrator.create_balanced_entry(
                author_ctx,
                TODAY,
                "Broken",
                [
                    LineSpec.debit_line("1000", Decimal("10.00")),
                    LineSpec.credit_line("9999", Decimal("10.00")),
                ],
            )

        assert orchestrator.list_entries(owner_id) == []

    def test_line_spec_rejects_two_sided_amounts(self):
        with pytest.raises(ValueError):
            LineSpec("1000", debit=Decimal("1.00"), credit=Decimal("1.00"))
        with pytest.raises(ValueError):
            LineSpec("1000")
