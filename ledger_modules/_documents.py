"""
Shared helpers for subsidiary document services.

Used by ``ledger_modules/ap/service.py`` and ``ledger_modules/ar/service.py``
for line-item input, amount checks, status guards, audit writes and the
commit/rollback boundary around each public operation.

Architecture: Modules layer.  Imports only from ledger_kernel.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.types import from_minor_units, to_minor_units
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import RequestContext
from ledger_kernel.exceptions import InvalidLineError, InvalidTransitionError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.reversal_service import ReversalService

logger = get_logger("modules.documents")

T = TypeVar("T")


@dataclass(frozen=True)
class DocumentItem:
    """One line of a bill or invoice: a ledger account and an amount."""

    account_code: str
    amount: Decimal
    description: str | None = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"Item amount must be positive, got {self.amount}")


def money(value: Decimal | int | str, account_code: str | None = None) -> Decimal:
    """Quantize an amount to minor units; InvalidLineError when it cannot be."""
    try:
        return from_minor_units(to_minor_units(value))
    except ValueError as exc:
        raise InvalidLineError(str(exc), account_code) from exc


def positive_amount(value: Decimal | int | str) -> Decimal:
    amount = money(value)
    if amount <= 0:
        raise InvalidLineError(f"amount must be positive, got {value}")
    return amount


def totals_by_account(items: Iterable[DocumentItem]) -> list[tuple[str, Decimal]]:
    """Sum item amounts per account, in first-seen account order."""
    totals: dict[str, Decimal] = {}
    for item in items:
        totals[item.account_code] = totals.get(item.account_code, Decimal("0.00")) + money(
            item.amount, item.account_code
        )
    return list(totals.items())


def require_transition(
    document_type: str,
    document_id: str,
    current: str,
    target: str,
    allowed: Mapping[str, frozenset[str]],
    reason: str | None = None,
) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is in ``allowed``."""
    if target not in allowed.get(current, frozenset()):
        logger.warning(
            "document_transition_rejected",
            extra={
                "document_type": document_type,
                "document_id": document_id,
                "current_status": current,
                "target_status": target,
            },
        )
        raise InvalidTransitionError(document_type, document_id, current, target, reason)


class DocumentService:
    """
    Base for document services.

    Contract:
        Each public operation runs through ``_run``.  The operation body
        runs in a savepoint, so a failure leaves nothing behind even when
        ``auto_commit`` is off.  With ``auto_commit`` on, ``_run`` also
        commits on success and rolls back on any exception.

    Guarantees:
        - Every document row written gets an audit record in the same
          savepoint (AuditorService).

    Non-goals:
        - Does NOT write journal rows; uses JournalService and
          ReversalService.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        journal_service: JournalService | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._journal = journal_service or JournalService(session, self._clock)
        self._reversals = ReversalService(session, self._clock, journal_service=self._journal)
        self._auditor = AuditorService(session, self._clock)

    def _run(self, operation: str, ctx: RequestContext, fn: Callable[[], T]) -> T:
        with LogContext.bind_request(ctx):
            try:
                with self._session.begin_nested():
                    result = fn()
                if self._auto_commit:
                    self._session.commit()
                return result
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    "document_operation_failed",
                    extra={"operation": operation},
                    exc_info=True,
                )
                raise
