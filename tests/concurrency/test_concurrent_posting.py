"""
Concurrent posting, reversal and numbering with real commits.

Every thread gets its own session and orchestrator; a Barrier releases
them together.  On SQLite the BEGIN IMMEDIATE write lock serializes the
contenders; on PostgreSQL the conditional UPDATE does.
"""

import threading
from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.exceptions import AlreadyPostedError, EntryAlreadyReversedError
from ledger_kernel.models.audit_log import AuditOperation
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.ledger_orchestrator import LedgerOrchestrator

pytestmark = pytest.mark.concurrency

TODAY = date(2026, 10, 15)


def _setup_posting_data(session_factory, admin_ctx, author_ctx) -> object:
    """Commit two accounts, an open period and one balanced draft."""
    orch = LedgerOrchestrator(session_factory(), DeterministicClock())
    orch.create_account(admin_ctx, "1000", "Cash", "asset")
    orch.create_account(admin_ctx, "3000", "Owner's Equity", "equity")
    orch.create_period(admin_ctx, "2026-10", date(2026, 10, 1), date(2026, 10, 31))
    entry_id = orch.create_draft_entry(author_ctx, TODAY, "Race me")
    orch.add_line(author_ctx, entry_id, "1000", debit=Decimal("50.00"))
    orch.add_line(author_ctx, entry_id, "3000", credit=Decimal("50.00"))
    return entry_id


def _run_together(count: int, work) -> list:
    """Run ``work(index)`` on ``count`` threads released by one barrier."""
    barrier = threading.Barrier(count)
    results: list = [None] * count

    def _worker(index: int) -> None:
        barrier.wait()
        try:
            results[index] = work(index)
        except Exception as exc:
            results[index] = exc

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


class TestConcurrentPost:

    def test_exactly_one_post_wins(self, session_factory, admin_ctx, author_ctx, moderator_ctx, owner_id):
        entry_id = _setup_posting_data(session_factory, admin_ctx, author_ctx)

        def _post(_):
            orch = LedgerOrchestrator(session_factory(), DeterministicClock())
            return orch.post(moderator_ctx, entry_id)

        results = _run_together(2, _post)

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], AlreadyPostedError)
        assert losers[0].entry_id == str(entry_id)

        check = LedgerOrchestrator(session_factory(), DeterministicClock())
        assert check.get_entry(owner_id, entry_id).posted is True
        post_records = [
            r for r in check.auditor.records_for(AuditorService.JOURNAL_ENTRIES, entry_id)
            if r.operation == AuditOperation.POST.value
        ]
        assert len(post_records) == 1

    def test_many_posters_one_winner(self, session_factory, admin_ctx, author_ctx, moderator_ctx):
        entry_id = _setup_posting_data(session_factory, admin_ctx, author_ctx)

        def _post(_):
            orch = LedgerOrchestrator(session_factory(), DeterministicClock())
            return orch.post(moderator_ctx, entry_id)

        results = _run_together(5, _post)

        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert all(isinstance(r, AlreadyPostedError) for r in results if isinstance(r, Exception))


class TestConcurrentReverse:

    def test_exactly_one_reversal_wins(
        self, session_factory, admin_ctx, author_ctx, moderator_ctx, owner_id
    ):
        entry_id = _setup_posting_data(session_factory, admin_ctx, author_ctx)
        LedgerOrchestrator(session_factory(), DeterministicClock()).post(moderator_ctx, entry_id)

        def _reverse(index):
            orch = LedgerOrchestrator(session_factory(), DeterministicClock())
            return orch.reverse(moderator_ctx, entry_id, TODAY, f"attempt {index}")

        results = _run_together(2, _reverse)

        losers = [r for r in results if isinstance(r, Exception)]
        assert len(losers) == 1
        assert isinstance(losers[0], EntryAlreadyReversedError)

        check = LedgerOrchestrator(session_factory(), DeterministicClock())
        assert len(check.list_entries(owner_id)) == 2
        assert check.selector.account_activity(owner_id, "1000") == Decimal("0.00")


class TestConcurrentNumbering:

    def test_entry_numbers_unique_and_contiguous(
        self, session_factory, admin_ctx, author_ctx, owner_id
    ):
        orch = LedgerOrchestrator(session_factory(), DeterministicClock())
        orch.create_period(admin_ctx, "2026-10", date(2026, 10, 1), date(2026, 10, 31))

        def _create(index):
            worker = LedgerOrchestrator(session_factory(), DeterministicClock())
            return worker.create_draft_entry(author_ctx, TODAY, f"Draft {index}")

        results = _run_together(6, _create)

        assert not [r for r in results if isinstance(r, Exception)]
        check = LedgerOrchestrator(session_factory(), DeterministicClock())
        numbers = sorted(e.entry_number for e in check.list_entries(owner_id))
        assert numbers == [1, 2, 3, 4, 5, 6]
