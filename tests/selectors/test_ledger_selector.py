"""
Read side: entry listings, account activity and the posted-balance sweep.
"""

from decimal import Decimal

from sqlalchemy import update

from ledger_kernel.models.journal import JournalLine


class TestListEntries:

    def test_filters_by_posted_state(self, orchestrator, owner_id, posted_entry, make_draft):
        draft_id = make_draft([("1000", "1.00", None), ("3000", None, "1.00")])

        assert [e.id for e in orchestrator.list_entries(owner_id)] == [posted_entry.id, draft_id]
        assert [e.id for e in orchestrator.list_entries(owner_id, posted=True)] == [posted_entry.id]
        assert [e.id for e in orchestrator.list_entries(owner_id, posted=False)] == [draft_id]

    def test_scoped_to_owner(self, orchestrator, other_owner_id, posted_entry):
        assert orchestrator.list_entries(other_owner_id) == []

    def test_lines_ordered_by_line_number(self, orchestrator, owner_id, posted_entry):
        [entry] = orchestrator.list_entries(owner_id)

        assert [line.line_number for line in entry.lines] == [1, 2]
        assert entry.total_debits == Decimal("100.00")
        assert entry.is_balanced


class TestAccountActivity:

    def test_drafts_do_not_count(self, orchestrator, owner_id, posted_entry, make_draft):
        make_draft([("1000", "40.00", None), ("3000", None, "40.00")])

        assert orchestrator.selector.account_activity(owner_id, "1000") == Decimal("100.00")
        assert orchestrator.selector.account_activity(owner_id, "3000") == Decimal("-100.00")

    def test_unused_account_is_zero(self, orchestrator, owner_id, posted_entry):
        assert orchestrator.selector.account_activity(owner_id, "5200") == Decimal("0.00")


class TestVerifyPostedBalance:

    def test_clean_ledger(self, orchestrator, owner_id, posted_entry):
        assert orchestrator.selector.verify_posted_balance(owner_id) == []

    def test_detects_out_of_band_edit(self, orchestrator, session, owner_id, posted_entry):
        line_id = posted_entry.lines[0].id
        # Core UPDATE skips the ORM immutability listeners
        session.execute(
            update(JournalLine.__table__)
            .where(JournalLine.__table__.c.id == str(line_id))
            .values(debit=Decimal("90.00"))
        )

        [violation] = orchestrator.selector.verify_posted_balance(owner_id)

        assert violation.entry_id == posted_entry.id
        assert violation.display_number == "JE-000001"
        assert violation.total_debits == Decimal("90.00")
        assert violation.total_credits == Decimal("100.00")
        assert violation.line_count == 2
