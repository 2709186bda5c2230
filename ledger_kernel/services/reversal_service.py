"""
ReversalService -- correct a posted entry by posting its mirror image.

Responsibility:
    Creates and posts a new entry whose lines swap the original's debits
    and credits, then links the two entries both ways.  The original's
    lines and posted flag are never touched.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by JournalService.reverse() and LedgerOrchestrator; drives
    JournalService for creation and posting.

Invariants enforced:
    - Only POSTED entries are reversed, and each at most once: the link
      is set with ``UPDATE ... WHERE reversed_by_id IS NULL``.
    - The reversal is dated on or after the original and passes the same
      period lock check as any post.
    - The reversal entry is posted through the normal posting path, so
      its accounts must still be active.
    - All writes share one savepoint: a failure at any step leaves
      neither a stray reversal entry nor a half-set link.

Failure modes:
    - EntryNotPostedError, EntryAlreadyReversedError.
    - InvalidReversalDateError, PeriodLockedError, UnknownAccountError.
    - PermissionDeniedError without REVERSE_ENTRIES.

Audit relevance:
    The reversal entry gets its own insert/post records; the original gets
    a ``reverse`` record carrying the user's reason.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.context import Permission, RequestContext, require_permission
from ledger_kernel.domain.dtos import EntrySnapshot, ReversalResult
from ledger_kernel.exceptions import (
    EntryAlreadyReversedError,
    EntryNotPostedError,
    InvalidReversalDateError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.audit_log import AuditOperation
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.reversal")


def reversal_description(display_number: str, description: str, reason: str) -> str:
    return f"REVERSAL of {display_number}: {description} - Reason: {reason}"


class ReversalService(BaseService):
    """
    Posts reversals of posted entries.

    Contract:
        ``reverse`` validates everything it can before writing, then
        creates, fills and posts the reversal and sets the link inside a
        single savepoint.

    Guarantees:
        - Every reversal line is the exact debit/credit swap of the
          original line with the same account, cost center and memo.
        - ``original.reversed_by_id == reversal.id`` and
          ``reversal.reverses_id == original.id``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        journal_service=None,
    ):
        super().__init__(session, clock)
        if journal_service is None:
            from ledger_kernel.services.journal_service import JournalService

            journal_service = JournalService(session, self.clock)
        self._journal = journal_service
        self._auditor = AuditorService(session, self.clock)

    def reverse(
        self,
        ctx: RequestContext,
        entry_id: UUID,
        reversal_date: date,
        reason: str,
    ) -> ReversalResult:
        """
        Reverse a posted entry.

        Raises:
            EntryNotPostedError: Original is still a draft.
            EntryAlreadyReversedError: Original already has a reversal.
            InvalidReversalDateError: reversal_date before the original date.
            PeriodLockedError: reversal_date is not in an open period.
        """
        require_permission(ctx, Permission.REVERSE_ENTRIES)
        with LogContext.bind(entry_id=str(entry_id)):
            original = self._journal._load_entry(ctx.owner_id, entry_id)
            self._validate(ctx, original, reversal_date)

            with self.session.begin_nested():
                reversal = self._journal._create_draft(
                    ctx,
                    reversal_date,
                    reversal_description(original.display_number, original.description, reason),
                    source_type=original.source_type,
                    source_id=original.source_id,
                    reverses_id=original.id,
                )
                for line in original.lines:
                    self._journal._add_line(
                        ctx,
                        reversal,
                        line.account_code,
                        debit=line.credit if line.credit > 0 else None,
                        credit=line.debit if line.debit > 0 else None,
                        cost_center_id=line.cost_center_id,
                        memo=line.memo,
                    )
                self._journal._post_entry(ctx, reversal)
                self._link(ctx, original, reversal, reason)

            self.session.refresh(original)

        logger.info(
            "entry_reversed",
            extra={
                "entry_id": str(original.id),
                "reversal_entry_id": str(reversal.id),
                "reversal_number": reversal.display_number,
            },
        )
        return ReversalResult(
            original_entry_id=original.id,
            reversal_entry_id=reversal.id,
            reversal_entry_number=reversal.entry_number,
            reversal_date=reversal_date,
            reason=reason,
        )

    def _validate(
        self,
        ctx: RequestContext,
        original: JournalEntry,
        reversal_date: date,
    ) -> None:
        if not original.posted:
            logger.warning("reverse_rejected_not_posted", extra={"entry_id": str(original.id)})
            raise EntryNotPostedError(str(original.id))
        if original.reversed_by_id is not None:
            logger.warning(
                "reverse_rejected_already_reversed",
                extra={"entry_id": str(original.id)},
            )
            raise EntryAlreadyReversedError(str(original.id), str(original.reversed_by_id))
        if reversal_date < original.entry_date:
            logger.warning(
                "reverse_rejected_date",
                extra={
                    "entry_id": str(original.id),
                    "entry_date": str(original.entry_date),
                    "reversal_date": str(reversal_date),
                },
            )
            raise InvalidReversalDateError(
                str(original.id), str(original.entry_date), str(reversal_date)
            )
        self._journal._periods.require_open(ctx.owner_id, reversal_date)

    def _link(
        self,
        ctx: RequestContext,
        original: JournalEntry,
        reversal: JournalEntry,
        reason: str,
    ) -> None:
        """Set original.reversed_by_id once, by compare-and-set."""
        before = EntrySnapshot.from_model(original).header_dict()
        result = self.session.execute(
            update(JournalEntry)
            .where(
                JournalEntry.id == original.id,
                JournalEntry.posted.is_(True),
                JournalEntry.reversed_by_id.is_(None),
            )
            .values(reversed_by_id=reversal.id, updated_by_id=ctx.actor_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "reverse_rejected_concurrent",
                extra={"entry_id": str(original.id)},
            )
            raise EntryAlreadyReversedError(str(original.id))

        after = dict(before)
        after["reversed_by_id"] = str(reversal.id)
        self._auditor.record(
            ctx,
            AuditorService.JOURNAL_ENTRIES,
            original.id,
            AuditOperation.REVERSE,
            before=before,
            after=after,
            reason=reason,
        )
