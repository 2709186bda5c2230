"""
PeriodService -- fiscal period lifecycle and posting-date gating.

Responsibility:
    Manages the fiscal period lifecycle (OPEN -> CLOSED -> LOCKED, plus the
    privileged CLOSED -> OPEN reopen) and answers whether a date accepts
    postings for a given owner.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by JournalService before every post, and by LedgerOrchestrator
    to drive the close/lock/reopen lifecycle.

Invariants enforced:
    - Fail-closed gating: a date covered by no period is locked.
    - Periods of one owner never overlap.
    - Transitions are row-locked (SELECT ... FOR UPDATE) so concurrent
      close attempts serialize.
    - Every transition writes an audit record.  Reopen writes one whatever
      the outcome, including rejections.

Failure modes:
    - PeriodLockedError: posting date in a closed/locked period or none.
    - InvalidTransitionError: transition not allowed from current status.
    - PeriodOverlapError, InvalidPeriodRangeError on create.
    - PeriodNotFoundError: unknown id for this owner.
    - PermissionDeniedError: missing MANAGE_PERIODS / REOPEN_PERIOD.

Audit relevance:
    Period transitions are significant state changes.  Rejected reopen
    attempts are kept on the audit trail so failed privileged actions
    remain visible.
"""

import calendar
from datetime import date, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.context import Permission, RequestContext, require_permission
from ledger_kernel.domain.dtos import FiscalPeriodInfo, UpsertOutcome, UpsertResult
from ledger_kernel.exceptions import (
    InvalidPeriodRangeError,
    InvalidTransitionError,
    LedgerKernelError,
    PeriodLockedError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PermissionDeniedError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_log import AuditOperation
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.period")

_ENTITY = "FiscalPeriod"


def month_period_name(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last day of a calendar month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def period_snapshot(period: FiscalPeriod) -> dict[str, Any]:
    return {
        "name": period.name,
        "start_date": period.start_date,
        "end_date": period.end_date,
        "status": PeriodStatus(period.status).value,
    }


class PeriodService(BaseService):
    """
    Fiscal period registry for one or more ledger owners.

    Contract:
        Every query and mutation is scoped to an owner.  Transition methods
        take the period row lock, validate the current status, flush, and
        write an audit record.

    Guarantees:
        - ``is_locked`` reads status fresh from storage.
        - ``close_period`` opens the next calendar month when configured to.

    Non-goals:
        - Does NOT commit.  Reopen rejections leave their audit record
          flushed; the orchestrator commits it.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auto_create_next_period: bool = True,
    ):
        super().__init__(session, clock)
        self._auditor = AuditorService(session, self.clock)
        self._auto_create_next_period = auto_create_next_period

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _get_period_orm(self, owner_id: UUID, period_id: UUID) -> FiscalPeriod | None:
        return self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.id == period_id,
                FiscalPeriod.owner_id == owner_id,
            )
        ).scalar_one_or_none()

    def _get_period_for_update(self, owner_id: UUID, period_id: UUID) -> FiscalPeriod | None:
        """Row-locked, freshly loaded period for a transition."""
        return self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.id == period_id,
                FiscalPeriod.owner_id == owner_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _get_period_for_date_orm(self, owner_id: UUID, on_date: date) -> FiscalPeriod | None:
        return self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.owner_id == owner_id,
                FiscalPeriod.start_date <= on_date,
                FiscalPeriod.end_date >= on_date,
            )
            .execution_options(populate_existing=True)
        ).scalars().first()

    def _find_overlap(self, owner_id: UUID, start_date: date, end_date: date) -> FiscalPeriod | None:
        """Two ranges overlap if start1 <= end2 AND start2 <= end1."""
        return self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.owner_id == owner_id,
                FiscalPeriod.start_date <= end_date,
                FiscalPeriod.end_date >= start_date,
            )
            .order_by(FiscalPeriod.start_date)
        ).scalars().first()

    def _find_by_name(self, owner_id: UUID, name: str) -> FiscalPeriod | None:
        return self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.owner_id == owner_id,
                FiscalPeriod.name == name,
            )
        ).scalar_one_or_none()

    def get_period(self, owner_id: UUID, period_id: UUID) -> FiscalPeriodInfo:
        period = self._get_period_orm(owner_id, period_id)
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return FiscalPeriodInfo.from_model(period)

    def get_period_for_date(self, owner_id: UUID, on_date: date) -> FiscalPeriodInfo | None:
        """Period covering ``on_date`` for the owner, or None."""
        period = self._get_period_for_date_orm(owner_id, on_date)
        return FiscalPeriodInfo.from_model(period) if period else None

    def list_periods(self, owner_id: UUID) -> list[FiscalPeriodInfo]:
        periods = self.session.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.owner_id == owner_id)
            .order_by(FiscalPeriod.start_date)
        ).scalars()
        return [FiscalPeriodInfo.from_model(p) for p in periods]

    def is_locked(self, owner_id: UUID, on_date: date) -> bool:
        """
        True if no period covers the date, or the covering period is
        closed or locked.
        """
        period = self._get_period_for_date_orm(owner_id, on_date)
        return period is None or period.is_locked

    def require_open(self, owner_id: UUID, on_date: date) -> FiscalPeriodInfo:
        """
        Return the open period covering ``on_date``.

        Raises:
            PeriodLockedError: Naming the period and its status, or
                reporting that no period covers the date.
        """
        period = self._get_period_for_date_orm(owner_id, on_date)
        if period is None:
            raise PeriodLockedError(entry_date=str(on_date))
        if period.is_locked:
            raise PeriodLockedError(
                entry_date=str(on_date),
                period_name=period.name,
                period_status=PeriodStatus(period.status).value,
            )
        return FiscalPeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_period(
        self,
        ctx: RequestContext,
        name: str,
        start_date: date,
        end_date: date,
        fiscal_year: int | None = None,
        period_number: int | None = None,
    ) -> FiscalPeriodInfo:
        """
        Create an open fiscal period.

        Raises:
            InvalidPeriodRangeError: start_date after end_date.
            PeriodOverlapError: Range overlaps, or name collides with, an
                existing period of the same owner.
        """
        require_permission(ctx, Permission.MANAGE_PERIODS)
        period = self._insert(ctx, name, start_date, end_date, fiscal_year, period_number)
        return FiscalPeriodInfo.from_model(period)

    def _insert(
        self,
        ctx: RequestContext,
        name: str,
        start_date: date,
        end_date: date,
        fiscal_year: int | None,
        period_number: int | None,
    ) -> FiscalPeriod:
        if start_date > end_date:
            raise InvalidPeriodRangeError(str(start_date), str(end_date))

        existing = self._find_overlap(ctx.owner_id, start_date, end_date)
        if existing is None:
            existing = self._find_by_name(ctx.owner_id, name)
        if existing is not None:
            logger.warning(
                "period_create_rejected_overlap",
                extra={"period_name": name, "existing_period": existing.name},
            )
            raise PeriodOverlapError(name, existing.name)

        period = FiscalPeriod(
            owner_id=ctx.owner_id,
            name=name,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.OPEN.value,
            fiscal_year=fiscal_year if fiscal_year is not None else start_date.year,
            period_number=period_number,
            created_by_id=ctx.actor_id,
        )
        self.session.add(period)
        self.session.flush()
        self._auditor.record(
            ctx,
            AuditorService.FISCAL_PERIODS,
            period.id,
            AuditOperation.INSERT,
            after=period_snapshot(period),
        )
        logger.info(
            "period_created",
            extra={
                "period_name": name,
                "start_date": str(start_date),
                "end_date": str(end_date),
            },
        )
        return period

    def initialize_fiscal_year(self, ctx: RequestContext, year: int) -> list[UpsertResult]:
        """
        Create the twelve monthly periods of ``year``.

        Months already covered by a period are reported as ALREADY_EXISTS
        with the covering period's id.
        """
        require_permission(ctx, Permission.MANAGE_PERIODS)
        results: list[UpsertResult] = []
        for month in range(1, 13):
            name = month_period_name(year, month)
            start_date, end_date = month_bounds(year, month)
            existing = self._find_overlap(ctx.owner_id, start_date, end_date)
            if existing is None:
                existing = self._find_by_name(ctx.owner_id, name)
            if existing is not None:
                results.append(UpsertResult(UpsertOutcome.ALREADY_EXISTS, name, existing.id))
                continue
            period = self._insert(ctx, name, start_date, end_date, year, month)
            results.append(UpsertResult(UpsertOutcome.CREATED, name, period.id))

        logger.info(
            "fiscal_year_initialized",
            extra={
                "fiscal_year": year,
                "created": sum(1 for r in results if r.created),
            },
        )
        return results

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition_target(self, ctx: RequestContext, period_id: UUID) -> FiscalPeriod:
        period = self._get_period_for_update(ctx.owner_id, period_id)
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def close_period(self, ctx: RequestContext, period_id: UUID) -> FiscalPeriodInfo:
        """
        Close an open period.

        Postconditions:
            - status is CLOSED, closed_at/closed_by_id stamped.
            - If enabled, the following calendar month exists as a period.

        Raises:
            InvalidTransitionError: Period is already closed or locked.
        """
        require_permission(ctx, Permission.MANAGE_PERIODS)
        period = self._transition_target(ctx, period_id)

        current = PeriodStatus(period.status)
        if current != PeriodStatus.OPEN:
            logger.warning(
                "period_close_rejected",
                extra={"period_name": period.name, "status": current.value},
            )
            raise InvalidTransitionError(
                _ENTITY, str(period.id), current.value, PeriodStatus.CLOSED.value
            )

        before = period_snapshot(period)
        period.status = PeriodStatus.CLOSED.value
        period.closed_at = self.clock.now()
        period.closed_by_id = ctx.actor_id
        period.updated_by_id = ctx.actor_id
        self.session.flush()
        self._auditor.record(
            ctx,
            AuditorService.FISCAL_PERIODS,
            period.id,
            AuditOperation.UPDATE,
            before=before,
            after=period_snapshot(period),
        )
        logger.info("period_closed", extra={"period_name": period.name})

        if self._auto_create_next_period:
            self._ensure_next_period(ctx, period)

        return FiscalPeriodInfo.from_model(period)

    def _ensure_next_period(self, ctx: RequestContext, closed: FiscalPeriod) -> None:
        next_start = closed.end_date + timedelta(days=1)
        _, end_date = month_bounds(next_start.year, next_start.month)
        start_date = next_start
        name = month_period_name(next_start.year, next_start.month)

        if self._find_overlap(ctx.owner_id, start_date, end_date) is not None:
            return
        if self._find_by_name(ctx.owner_id, name) is not None:
            return

        self._insert(ctx, name, start_date, end_date, next_start.year, next_start.month)
        logger.info(
            "next_period_auto_created",
            extra={"period_name": name, "after_period": closed.name},
        )

    def lock_period(self, ctx: RequestContext, period_id: UUID) -> FiscalPeriodInfo:
        """
        Lock a closed period.

        Raises:
            InvalidTransitionError: Period is not closed.
        """
        require_permission(ctx, Permission.MANAGE_PERIODS)
        period = self._transition_target(ctx, period_id)

        current = PeriodStatus(period.status)
        if current != PeriodStatus.CLOSED:
            logger.warning(
                "period_lock_rejected",
                extra={"period_name": period.name, "status": current.value},
            )
            raise InvalidTransitionError(
                _ENTITY,
                str(period.id),
                current.value,
                PeriodStatus.LOCKED.value,
                reason="only closed periods can be locked",
            )

        before = period_snapshot(period)
        period.status = PeriodStatus.LOCKED.value
        period.locked_at = self.clock.now()
        period.locked_by_id = ctx.actor_id
        period.updated_by_id = ctx.actor_id
        self.session.flush()
        self._auditor.record(
            ctx,
            AuditorService.FISCAL_PERIODS,
            period.id,
            AuditOperation.UPDATE,
            before=before,
            after=period_snapshot(period),
        )
        logger.info("period_locked", extra={"period_name": period.name})
        return FiscalPeriodInfo.from_model(period)

    def reopen_period(
        self,
        ctx: RequestContext,
        period_id: UUID,
        reason: str,
    ) -> FiscalPeriodInfo:
        """
        Reopen a closed period.  Privileged and always audited.

        A rejected attempt still writes a ``reopen`` audit record carrying
        the outcome and error code, and the record is flushed before the
        error is raised.

        Raises:
            PermissionDeniedError: Role lacks REOPEN_PERIOD.
            InvalidTransitionError: Period is open, or locked.
            PeriodNotFoundError: Unknown period for this owner.
        """
        period = self._get_period_for_update(ctx.owner_id, period_id)

        error: LedgerKernelError | None = None
        if period is None:
            error = PeriodNotFoundError(str(period_id))
        elif not ctx.can(Permission.REOPEN_PERIOD):
            error = PermissionDeniedError(
                role=ctx.role_name, permission=Permission.REOPEN_PERIOD.value
            )
        else:
            current = PeriodStatus(period.status)
            if current == PeriodStatus.LOCKED:
                error = InvalidTransitionError(
                    _ENTITY,
                    str(period.id),
                    current.value,
                    PeriodStatus.OPEN.value,
                    reason="cannot be reopened without unlocking first",
                )
            elif current == PeriodStatus.OPEN:
                error = InvalidTransitionError(
                    _ENTITY,
                    str(period.id),
                    current.value,
                    PeriodStatus.OPEN.value,
                    reason="period is already open",
                )

        before = period_snapshot(period) if period is not None else None

        if error is not None:
            after = dict(before or {})
            after.update({"outcome": "rejected", "error_code": error.code})
            self._auditor.record(
                ctx,
                AuditorService.FISCAL_PERIODS,
                period_id,
                AuditOperation.REOPEN,
                before=before,
                after=after,
                reason=reason,
            )
            logger.warning(
                "period_reopen_rejected",
                extra={"period_id": str(period_id), "error_code": error.code},
            )
            raise error

        period.status = PeriodStatus.OPEN.value
        period.reopened_at = self.clock.now()
        period.reopened_by_id = ctx.actor_id
        period.updated_by_id = ctx.actor_id
        self.session.flush()

        after = period_snapshot(period)
        after["outcome"] = "reopened"
        self._auditor.record(
            ctx,
            AuditorService.FISCAL_PERIODS,
            period.id,
            AuditOperation.REOPEN,
            before=before,
            after=after,
            reason=reason,
        )
        logger.info(
            "period_reopened",
            extra={"period_name": period.name, "reason": reason},
        )
        return FiscalPeriodInfo.from_model(period)
