"""
JournalService -- the double-entry journal engine.

Responsibility:
    Creates draft journal entries and their lines, maintains drafts, and
    posts them.  Posting validates balance, line count, account status
    and the fiscal period, then freezes the entry with a single
    compare-and-set UPDATE.  Also exposes the balanced-entry creation API
    used by subsidiary documents.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by LedgerOrchestrator, ReversalService and the ledger_modules
    document services.  Uses AccountService, PeriodService,
    SequenceService and AuditorService.

Invariants enforced:
    - Balance: sum(debit) == sum(credit) in integer minor units, exactly,
      for every posted entry; at least two lines.
    - Immutability: a posted entry's header and lines never change.  All
      draft-maintenance calls raise ImmutableEntryError once posted.
    - Single posting: ``UPDATE ... WHERE id = :id AND posted = false``;
      zero affected rows raises AlreadyPostedError, so two concurrent
      posts of one draft cannot both succeed.
    - All-or-nothing: validation happens before any write; the CAS and its
      audit record share one savepoint.
    - Numbering: entry numbers come from the owner's locked counter row at
      creation and are never reused.

Failure modes:
    - UnbalancedEntryError, UnknownAccountError, PeriodLockedError,
      AlreadyPostedError on post.
    - InvalidLineError on malformed line amounts.
    - ImmutableEntryError on any mutation of a posted entry.
    - EntryNotFoundError / LineNotFoundError for ids of another owner.
    - AuditWriteError if the audit record cannot be written.

Audit relevance:
    Entry create/update/delete, line add/remove, and post each write an
    audit record in the same transaction as the mutation.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledger_kernel.db.types import from_minor_units, to_minor_units
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.context import Permission, RequestContext, require_permission
from ledger_kernel.domain.dtos import EntrySnapshot, LineSpec
from ledger_kernel.exceptions import (
    AlreadyPostedError,
    EntryNotFoundError,
    ImmutableEntryError,
    InvalidLineError,
    LineNotFoundError,
    PeriodLockedError,
    UnbalancedEntryError,
    UnknownAccountError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.audit_log import AuditOperation
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.journal")

_ZERO = Decimal("0.00")


def _coerce_amount(value, side: str, account_code: str) -> Decimal:
    """Validate one side of a line and return it at minor-unit scale."""
    if value is None:
        return _ZERO
    try:
        minor = to_minor_units(value)
    except ValueError as exc:
        raise InvalidLineError(f"{side}: {exc}", account_code) from exc
    if minor < 0:
        raise InvalidLineError(f"{side} must be >= 0, got {value}", account_code)
    return from_minor_units(minor)


def line_amounts(
    account_code: str,
    debit=None,
    credit=None,
) -> tuple[Decimal, Decimal]:
    """
    Normalize a line's amounts.

    Raises:
        InvalidLineError: Negative, sub-cent, non-numeric, or not exactly
            one positive side.
    """
    debit_amount = _coerce_amount(debit, "debit", account_code)
    credit_amount = _coerce_amount(credit, "credit", account_code)
    if (debit_amount > 0) == (credit_amount > 0):
        raise InvalidLineError(
            "exactly one of debit or credit must be greater than zero",
            account_code,
        )
    return debit_amount, credit_amount


def _line_snapshot(line: JournalLine) -> dict:
    return {
        "journal_entry_id": line.journal_entry_id,
        "line_number": line.line_number,
        "account_code": line.account_code,
        "debit": line.debit,
        "credit": line.credit,
        "cost_center_id": line.cost_center_id,
        "memo": line.memo,
    }


class JournalService(BaseService):
    """
    Journal entry lifecycle: DRAFT -> POSTED.

    Contract:
        Public methods take a RequestContext, check the role's permission,
        and scope every lookup to ``ctx.owner_id``.  Drafts may be
        unbalanced; ``post`` is the single gate into the POSTED state.

    Guarantees:
        - A failed ``post`` leaves the entry DRAFT with no audit record.
        - ``post`` is not idempotent: the second call raises
          AlreadyPostedError.
        - Account status and period status are read fresh at post time.

    Non-goals:
        - Does NOT commit.
        - Does NOT aggregate balances (see JournalSelector).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        account_service: AccountService | None = None,
        period_service: PeriodService | None = None,
    ):
        super().__init__(session, clock)
        self._accounts = account_service or AccountService(session, self.clock)
        self._periods = period_service or PeriodService(session, self.clock)
        self._sequences = SequenceService(session)
        self._auditor = AuditorService(session, self.clock)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_entry(self, owner_id: UUID, entry_id: UUID) -> JournalEntry:
        """Freshly loaded entry of this owner, or EntryNotFoundError."""
        entry = self.session.execute(
            select(JournalEntry)
            .where(
                JournalEntry.id == entry_id,
                JournalEntry.owner_id == owner_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def _require_draft(self, entry: JournalEntry, operation: str) -> None:
        if entry.posted:
            logger.warning(
                "posted_entry_mutation_rejected",
                extra={"entry_id": str(entry.id), "operation": operation},
            )
            raise ImmutableEntryError(str(entry.id), operation)

    def _header(self, entry: JournalEntry) -> dict:
        return EntrySnapshot.from_model(entry).header_dict()

    def get_entry(self, owner_id: UUID, entry_id: UUID) -> EntrySnapshot:
        """Read-only snapshot with posted flag and ordered lines."""
        return EntrySnapshot.from_model(self._load_entry(owner_id, entry_id))

    def is_period_locked(self, owner_id: UUID, on_date: date) -> bool:
        return self._periods.is_locked(owner_id, on_date)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def create_draft_entry(
        self,
        ctx: RequestContext,
        entry_date: date,
        description: str,
        source_type: str | None = None,
        source_id: UUID | None = None,
    ) -> UUID:
        """Create an empty DRAFT entry and allocate its number."""
        require_permission(ctx, Permission.WRITE_ENTRIES)
        entry = self._create_draft(ctx, entry_date, description, source_type, source_id)
        return entry.id

    def _create_draft(
        self,
        ctx: RequestContext,
        entry_date: date,
        description: str,
        source_type: str | None = None,
        source_id: UUID | None = None,
        reverses_id: UUID | None = None,
    ) -> JournalEntry:
        entry_number = self._sequences.next_value(
            SequenceService.journal_entry_sequence(ctx.owner_id)
        )
        entry = JournalEntry(
            owner_id=ctx.owner_id,
            entry_number=entry_number,
            entry_date=entry_date,
            description=description,
            posted=False,
            reverses_id=reverses_id,
            source_type=source_type,
            source_id=source_id,
            created_by_id=ctx.actor_id,
        )
        self.session.add(entry)
        self.session.flush()
        self._auditor.record(
            ctx,
            AuditorService.JOURNAL_ENTRIES,
            entry.id,
            AuditOperation.INSERT,
            after=self._header(entry),
        )
        logger.info(
            "entry_created",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.display_number,
                "entry_date": str(entry_date),
            },
        )
        return entry

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
        """
        Append a line to a draft.

        Raises:
            ImmutableEntryError: Entry is posted.
            InvalidLineError: Amounts are not exactly one positive side.
            UnknownAccountError: Account code does not exist.
        """
        require_permission(ctx, Permission.WRITE_ENTRIES)
        entry = self._load_entry(ctx.owner_id, entry_id)
        line = self._add_line(
            ctx, entry, account_code,
            debit=debit, credit=credit, cost_center_id=cost_center_id, memo=memo,
        )
        return line.id

    def _add_line(
        self,
        ctx: RequestContext,
        entry: JournalEntry,
        account_code: str,
        *,
        debit=None,
        credit=None,
        cost_center_id: str | None = None,
        memo: str | None = None,
    ) -> JournalLine:
        self._require_draft(entry, "add lines to")
        debit_amount, credit_amount = line_amounts(account_code, debit, credit)
        # Existence only; the active flag is checked at post time
        self._accounts.get_account(account_code)

        next_number = max((line.line_number for line in entry.lines), default=0) + 1
        line = JournalLine(
            account_code=account_code,
            line_number=next_number,
            debit=debit_amount,
            credit=credit_amount,
            cost_center_id=cost_center_id,
            memo=memo,
            created_by_id=ctx.actor_id,
        )
        entry.lines.append(line)
        self.session.flush()
        self._auditor.record(
            ctx,
            AuditorService.JOURNAL_LINES,
            line.id,
            AuditOperation.INSERT,
            after=_line_snapshot(line),
        )
        return line

    def update_draft_entry(
        self,
        ctx: RequestContext,
        entry_id: UUID,
        *,
        entry_date: date | None = None,
        description: str | None = None,
    ) -> EntrySnapshot:
        """Change the date and/or description of a draft."""
        require_permission(ctx, Permission.WRITE_ENTRIES)
        entry = self._load_entry(ctx.owner_id, entry_id)
        self._require_draft(entry, "modify")

        before = self._header(entry)
        if entry_date is not None:
            entry.entry_date = entry_date
        if description is not None:
            entry.description = description
        entry.updated_by_id = ctx.actor_id
        self.session.flush()
        self._auditor.record(
            ctx,
            AuditorService.JOURNAL_ENTRIES,
            entry.id,
            AuditOperation.UPDATE,
            before=before,
            after=self._header(entry),
        )
        return EntrySnapshot.from_model(entry)

    def remove_line(self, ctx: RequestContext, line_id: UUID) -> None:
        """Remove one line from a draft."""
        require_permission(ctx, Permission.WRITE_ENTRIES)
        line = self.session.execute(
            select(JournalLine)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalLine.id == line_id,
                JournalEntry.owner_id == ctx.owner_id,
            )
        ).scalar_one_or_none()
        if line is None:
            raise LineNotFoundError(str(line_id))

        entry = self._load_entry(ctx.owner_id, line.journal_entry_id)
        self._require_draft(entry, "delete lines of")

        before = _line_snapshot(line)
        entry.lines.remove(line)
        self.session.flush()
        self._auditor.record(
            ctx,
            AuditorService.JOURNAL_LINES,
            line_id,
            AuditOperation.DELETE,
            before=before,
        )

    def delete_draft_entry(self, ctx: RequestContext, entry_id: UUID) -> None:
        """Delete a draft and its lines.  The entry number is not reused."""
        require_permission(ctx, Permission.WRITE_ENTRIES)
        entry = self._load_entry(ctx.owner_id, entry_id)
        self._require_draft(entry, "delete")

        before = EntrySnapshot.from_model(entry).to_dict()
        self.session.delete(entry)
        self.session.flush()
        self._auditor.record(
            ctx,
            AuditorService.JOURNAL_ENTRIES,
            entry_id,
            AuditOperation.DELETE,
            before=before,
        )
        logger.info("draft_entry_deleted", extra={"entry_id": str(entry_id)})

    def create_balanced_entry(
        self,
        ctx: RequestContext,
        entry_date: date,
        description: str,
        lines: list[LineSpec],
        source_type: str | None = None,
        source_id: UUID | None = None,
    ) -> EntrySnapshot:
        """
        Create a DRAFT entry from ``LineSpec`` items, ready for ``post``.

        Balance and line count are validated before anything is written.

        Raises:
            UnbalancedEntryError: Fewer than two lines, or debits != credits.
            InvalidLineError: A line carries sub-cent amounts.
            UnknownAccountError: A line names an unknown account.
        """
        require_permission(ctx, Permission.WRITE_ENTRIES)
        normalized = [
            (item, *line_amounts(item.account_code, item.debit or None, item.credit or None))
            for item in lines
        ]
        self._check_balance(
            [d for _, d, _ in normalized],
            [c for _, _, c in normalized],
        )
        for code in sorted({item.account_code for item in lines}):
            self._accounts.get_account(code)

        entry = self._create_draft(ctx, entry_date, description, source_type, source_id)
        for item, debit_amount, credit_amount in normalized:
            self._add_line(
                ctx,
                entry,
                item.account_code,
                debit=debit_amount if debit_amount > 0 else None,
                credit=credit_amount if credit_amount > 0 else None,
                cost_center_id=item.cost_center_id,
                memo=item.memo,
            )
        return EntrySnapshot.from_model(entry)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def _check_balance(
        self,
        debits: list[Decimal],
        credits: list[Decimal],
        entry_id: UUID | None = None,
    ) -> None:
        """Exact integer minor-unit balance check."""
        debit_minor = sum(to_minor_units(d) for d in debits)
        credit_minor = sum(to_minor_units(c) for c in credits)
        line_count = len(debits)
        entry_ref = str(entry_id) if entry_id else None
        if line_count < 2 or debit_minor != credit_minor:
            raise UnbalancedEntryError(
                from_minor_units(debit_minor),
                from_minor_units(credit_minor),
                line_count=line_count,
                entry_id=entry_ref,
            )

    def _validate_for_posting(self, owner_id: UUID, entry: JournalEntry) -> None:
        lines = list(entry.lines)
        try:
            self._check_balance(
                [line.debit for line in lines],
                [line.credit for line in lines],
                entry.id,
            )
        except UnbalancedEntryError as exc:
            logger.warning(
                "post_rejected_unbalanced",
                extra={
                    "entry_id": str(entry.id),
                    "line_count": len(lines),
                    "difference": str(exc.difference),
                },
            )
            raise

        for code in sorted({line.account_code for line in lines}):
            try:
                self._accounts.resolve_account(code)
            except UnknownAccountError as exc:
                logger.warning(
                    "post_rejected_unknown_account",
                    extra={"entry_id": str(entry.id), "account_code": code, "reason": exc.reason},
                )
                raise

        try:
            self._periods.require_open(owner_id, entry.entry_date)
        except PeriodLockedError as exc:
            logger.warning(
                "post_rejected_period_locked",
                extra={
                    "entry_id": str(entry.id),
                    "entry_date": str(entry.entry_date),
                    "period_name": exc.period_name,
                    "period_status": exc.period_status,
                },
            )
            raise

    def post(self, ctx: RequestContext, entry_id: UUID) -> EntrySnapshot:
        """
        Post a draft entry.

        Preconditions:
            - Entry is a DRAFT of ``ctx.owner_id``.

        Postconditions:
            - posted=True, posted_at/posted_by_id stamped, one ``post``
              audit record written.

        Raises:
            AlreadyPostedError: Entry is posted, or a concurrent post won.
            UnbalancedEntryError: Fewer than two lines, or unbalanced.
            UnknownAccountError: A line's account is missing or inactive.
            PeriodLockedError: Entry date is not in an open period.
            AuditWriteError: Audit record could not be written.
        """
        require_permission(ctx, Permission.POST_ENTRIES)
        with LogContext.bind(entry_id=str(entry_id)):
            entry = self._load_entry(ctx.owner_id, entry_id)
            self._post_entry(ctx, entry)
            return EntrySnapshot.from_model(entry)

    def _post_entry(self, ctx: RequestContext, entry: JournalEntry) -> None:
        if entry.posted:
            logger.warning("post_rejected_already_posted", extra={"entry_id": str(entry.id)})
            raise AlreadyPostedError(str(entry.id))

        self._validate_for_posting(ctx.owner_id, entry)

        before = self._header(entry)
        posted_at = self.clock.now()
        with self.session.begin_nested():
            result = self.session.execute(
                update(JournalEntry)
                .where(
                    JournalEntry.id == entry.id,
                    JournalEntry.posted.is_(False),
                )
                .values(
                    posted=True,
                    posted_at=posted_at,
                    posted_by_id=ctx.actor_id,
                    updated_by_id=ctx.actor_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.warning(
                    "post_rejected_concurrent",
                    extra={"entry_id": str(entry.id)},
                )
                raise AlreadyPostedError(str(entry.id))

            after = dict(before)
            after.update(
                posted=True,
                posted_at=posted_at.isoformat(),
                posted_by_id=str(ctx.actor_id),
            )
            self._auditor.record(
                ctx,
                AuditorService.JOURNAL_ENTRIES,
                entry.id,
                AuditOperation.POST,
                before=before,
                after=after,
            )

        self.session.refresh(entry)
        logger.info(
            "entry_posted",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.display_number,
                "total": str(entry.total_debits),
            },
        )

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def reverse(
        self,
        ctx: RequestContext,
        entry_id: UUID,
        reversal_date: date,
        reason: str,
    ) -> UUID:
        """Reverse a posted entry; returns the new reversal entry's id."""
        from ledger_kernel.services.reversal_service import ReversalService

        result = ReversalService(self.session, self.clock, journal_service=self).reverse(
            ctx, entry_id, reversal_date, reason
        )
        return result.reversal_entry_id

