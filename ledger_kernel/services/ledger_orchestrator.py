"""
Ledger Orchestrator - transaction boundary for the ledger kernel.

The Orchestrator ties together:
- AccountService: chart of accounts
- PeriodService: fiscal periods and their lifecycle
- JournalService / ReversalService: drafts, posting, reversal
- AuditorService: audit trail
- JournalSelector: read side

It manages its own transaction boundary.  Every mutating call commits on
success and rolls back on failure.  The kernel services underneath only
flush.

The one deliberate exception is ``reopen_period``: a rejected reopen
attempt has already flushed its ``reopen`` audit record, and that record is
committed before the error is re-raised.
"""

import time
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import RequestContext
from ledger_kernel.domain.dtos import (
    AccountInfo,
    EntrySnapshot,
    FiscalPeriodInfo,
    LineSpec,
    ReversalResult,
    UpsertResult,
)
from ledger_kernel.exceptions import (
    InvalidTransitionError,
    PeriodNotFoundError,
    PermissionDeniedError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import AccountType
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.reversal_service import ReversalService

logger = get_logger("services.ledger_orchestrator")

T = TypeVar("T")

# Rejections of reopen_period whose audit record must survive
_AUDITED_REOPEN_REJECTIONS = (
    PermissionDeniedError,
    InvalidTransitionError,
    PeriodNotFoundError,
)


class LedgerOrchestrator:
    """
    Entry point for callers of the ledger kernel.

    By default each mutating method commits on success and rolls back on
    failure.  Set auto_commit=False to delegate transaction control to the
    caller (tests, or composing several calls in one transaction).

    Reads never commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        auto_commit: bool = True,
        block_deactivation_in_use: bool = False,
        auto_create_next_period: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit

        self.accounts = AccountService(
            session, self._clock, block_deactivation_in_use=block_deactivation_in_use
        )
        self.periods = PeriodService(
            session, self._clock, auto_create_next_period=auto_create_next_period
        )
        self.journal = JournalService(
            session,
            self._clock,
            account_service=self.accounts,
            period_service=self.periods,
        )
        self.reversals = ReversalService(session, self._clock, journal_service=self.journal)
        self.auditor = AuditorService(session, self._clock)
        self.selector = JournalSelector(session)

    @classmethod
    def from_settings(
        cls,
        session: Session,
        settings: Any,
        clock: Clock | None = None,
        *,
        auto_commit: bool = True,
    ) -> "LedgerOrchestrator":
        """Build an orchestrator from a ledger_config.LedgerSettings."""
        return cls(
            session,
            clock,
            auto_commit=auto_commit,
            block_deactivation_in_use=settings.accounts.block_deactivation_in_use,
            auto_create_next_period=settings.periods.auto_create_next_period,
        )

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        ctx: RequestContext,
        fn: Callable[[], T],
        commit_on: tuple[type[BaseException], ...] = (),
    ) -> T:
        with LogContext.bind_request(ctx):
            t0 = time.monotonic()
            try:
                result = fn()
                if self._auto_commit:
                    self._session.commit()
            except commit_on:
                if self._auto_commit:
                    self._session.commit()
                logger.warning(
                    "operation_rejected_audited",
                    extra={"operation": operation},
                )
                raise
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.warning(
                    "operation_failed",
                    extra={"operation": operation, "duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.debug(
                "operation_completed",
                extra={"operation": operation, "duration_ms": duration_ms},
            )
            return result

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        ctx: RequestContext,
        code: str,
        name: str,
        account_type: AccountType | str,
    ) -> AccountInfo:
        return self._run(
            "create_account", ctx,
            lambda: self.accounts.create_account(ctx, code, name, account_type),
        )

    def upsert_account(
        self,
        ctx: RequestContext,
        code: str,
        name: str,
        account_type: AccountType | str,
    ) -> UpsertResult:
        return self._run(
            "upsert_account", ctx,
            lambda: self.accounts.upsert_account(ctx, code, name, account_type),
        )

    def deactivate_account(self, ctx: RequestContext, code: str) -> AccountInfo:
        return self._run(
            "deactivate_account", ctx,
            lambda: self.accounts.deactivate_account(ctx, code),
        )

    def resolve_account(self, code: str) -> AccountInfo:
        return self.accounts.resolve_account(code)

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def create_period(
        self,
        ctx: RequestContext,
        name: str,
        start_date: date,
        end_date: date,
    ) -> FiscalPeriodInfo:
        return self._run(
            "create_period", ctx,
            lambda: self.periods.create_period(ctx, name, start_date, end_date),
        )

    def initialize_fiscal_year(self, ctx: RequestContext, year: int) -> list[UpsertResult]:
        return self._run(
            "initialize_fiscal_year", ctx,
            lambda: self.periods.initialize_fiscal_year(ctx, year),
        )

    def close_period(self, ctx: RequestContext, period_id: UUID) -> FiscalPeriodInfo:
        return self._run(
            "close_period", ctx,
            lambda: self.periods.close_period(ctx, period_id),
        )

    def lock_period(self, ctx: RequestContext, period_id: UUID) -> FiscalPeriodInfo:
        return self._run(
            "lock_period", ctx,
            lambda: self.periods.lock_period(ctx, period_id),
        )

    def reopen_period(
        self,
        ctx: RequestContext,
        period_id: UUID,
        reason: str,
    ) -> FiscalPeriodInfo:
        """Reopen a closed period; rejected attempts stay on the audit trail."""
        return self._run(
            "reopen_period", ctx,
            lambda: self.periods.reopen_period(ctx, period_id, reason),
            commit_on=_AUDITED_REOPEN_REJECTIONS,
        )

    def is_period_locked(self, owner_id: UUID, on_date: date) -> bool:
        return self.periods.is_locked(owner_id, on_date)

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def create_draft_entry(
        self,
        ctx: RequestContext,
        entry_date: date,
        description: str,
    ) -> UUID:
        return self._run(
            "create_draft_entry", ctx,
            lambda: self.journal.create_draft_entry(ctx, entry_date, description),
        )

    def add_line(
        self,
        ctx: RequestContext,
        entry_id: UUID,
        account_code: str,
        *,
        debit: Decimal | None = None,
        credit: Decimal | None = None,
        cost_center_id: str | None = None,
        memo: str | None = None,
    ) -> UUID:
        return self._run(
            "add_line", ctx,
            lambda: self.journal.add_line(
                ctx, entry_id, account_code,
                debit=debit, credit=credit, cost_center_id=cost_center_id, memo=memo,
            ),
        )

    def update_draft_entry(
        self,
        ctx: RequestContext,
        entry_id: UUID,
        *,
        entry_date: date | None = None,
        description: str | None = None,
    ) -> EntrySnapshot:
        return self._run(
            "update_draft_entry", ctx,
            lambda: self.journal.update_draft_entry(
                ctx, entry_id, entry_date=entry_date, description=description
            ),
        )

    def remove_line(self, ctx: RequestContext, line_id: UUID) -> None:
        return self._run(
            "remove_line", ctx,
            lambda: self.journal.remove_line(ctx, line_id),
        )

    def delete_draft_entry(self, ctx: RequestContext, entry_id: UUID) -> None:
        return self._run(
            "delete_draft_entry", ctx,
            lambda: self.journal.delete_draft_entry(ctx, entry_id),
        )

    def create_balanced_entry(
        self,
        ctx: RequestContext,
        entry_date: date,
        description: str,
        lines: list[LineSpec],
        source_type: str | None = None,
        source_id: UUID | None = None,
    ) -> EntrySnapshot:
        return self._run(
            "create_balanced_entry", ctx,
            lambda: self.journal.create_balanced_entry(
                ctx, entry_date, description, lines, source_type, source_id
            ),
        )

    def post(self, ctx: RequestContext, entry_id: UUID) -> EntrySnapshot:
        return self._run("post", ctx, lambda: self.journal.post(ctx, entry_id))

    def reverse(
        self,
        ctx: RequestContext,
        entry_id: UUID,
        reversal_date: date,
        reason: str,
    ) -> ReversalResult:
        return self._run(
            "reverse", ctx,
            lambda: self.reversals.reverse(ctx, entry_id, reversal_date, reason),
        )

    def get_entry(self, owner_id: UUID, entry_id: UUID) -> EntrySnapshot:
        return self.journal.get_entry(owner_id, entry_id)

    def list_entries(self, owner_id: UUID, posted: bool | None = None) -> list[EntrySnapshot]:
        return self.selector.list_entries(owner_id, posted)
