"""
AuditorService -- append-only audit records for every financial mutation.

Responsibility:
    Writes one immutable ``AuditLogRecord`` per mutation of a financial
    table (accounts, fiscal periods, journal entries, journal lines and
    the AP/AR document tables), in the same transaction as the mutation.
    Provides per-record tamper detection and per-row trails for forensic
    review.

Architecture position:
    Kernel > Services -- imperative shell, called by AccountService,
    PeriodService, JournalService, ReversalService and the document
    services in ledger_modules.

Invariants enforced:
    - No mutation without an audit record: any database failure while
      writing the record raises AuditWriteError, and the caller's
      savepoint or transaction rolls the mutation back with it.
    - Append-only: records are never modified or deleted (ORM listeners
      in db/immutability.py).
    - ``record_hash = H(table | record_id | operation | payload_hash | actor)``
      so an edit of any stored snapshot is detectable by verify_record().

Failure modes:
    - AuditWriteError (consistency kind) wrapping the SQLAlchemy error.

Audit relevance:
    This IS the audit service.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import RequestContext
from ledger_kernel.exceptions import AuditWriteError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_log import AuditLogRecord, AuditOperation
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.utils.hashing import hash_audit_record, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTrailEntry:
    """A single entry in an audit trail."""

    seq: int
    operation: AuditOperation
    occurred_at: datetime
    actor_id: UUID
    effective_role: str
    changed_fields: tuple[str, ...]
    reason: str | None
    record_hash: str


@dataclass(frozen=True)
class AuditTrail:
    """All audit records of one row, oldest first."""

    table_name: str
    record_id: UUID
    entries: tuple[AuditTrailEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def operations(self) -> tuple[AuditOperation, ...]:
        return tuple(entry.operation for entry in self.entries)


def changed_fields(before: dict | None, after: dict | None) -> list[str]:
    """Keys whose values differ between two snapshots, sorted."""
    before = before or {}
    after = after or {}
    keys = set(before) | set(after)
    return sorted(key for key in keys if before.get(key) != after.get(key))


def _audit_payload(before: Any, after: Any, reason: str | None) -> dict[str, Any]:
    return {"before": before, "after": after, "reason": reason}


class AuditorService:
    """
    Service for writing and verifying audit records.

    Contract:
        ``record()`` is called inside the caller's transaction, after the
        mutation it describes has been flushed.  It flushes the record.

    Guarantees:
        - Every record carries actor_id and effective_role from the
          RequestContext.
        - Snapshots are stored in canonical JSON-safe form, so
          verify_record() can recompute the hashes from stored values.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - No global hash chain; each record is sealed individually.
    """

    ACCOUNTS = "accounts"
    FISCAL_PERIODS = "fiscal_periods"
    JOURNAL_ENTRIES = "journal_entries"
    JOURNAL_LINES = "journal_lines"
    AP_BILLS = "ap_bills"
    AP_BILL_ITEMS = "ap_bill_items"
    AP_BILL_PAYMENTS = "ap_bill_payments"
    AR_INVOICES = "ar_invoices"
    AR_INVOICE_ITEMS = "ar_invoice_items"
    AR_RECEIPTS = "ar_receipts"
    AR_CREDIT_NOTES = "ar_credit_notes"

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def record(
        self,
        ctx: RequestContext,
        table_name: str,
        record_id: UUID,
        operation: AuditOperation,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> AuditLogRecord:
        """
        Write one audit record.

        Postconditions:
            - The record is flushed with ``payload_hash`` and ``record_hash``
              set.

        Raises:
            AuditWriteError: If the record cannot be written.
        """
        safe_before = to_json_safe(before) if before is not None else None
        safe_after = to_json_safe(after) if after is not None else None
        payload_hash = hash_payload(_audit_payload(safe_before, safe_after, reason))
        record_hash = hash_audit_record(
            table_name=table_name,
            record_id=str(record_id),
            operation=operation.value,
            payload_hash=payload_hash,
            actor_id=str(ctx.actor_id),
        )

        try:
            seq = self._sequence_service.next_value(f"audit_log:{ctx.owner_id}")
            audit_record = AuditLogRecord(
                seq=seq,
                table_name=table_name,
                record_id=record_id,
                owner_id=ctx.owner_id,
                actor_id=ctx.actor_id,
                effective_role=ctx.role_name,
                operation=operation.value,
                occurred_at=self._clock.now(),
                before=safe_before,
                after=safe_after,
                changed_fields=changed_fields(safe_before, safe_after),
                reason=reason,
                payload_hash=payload_hash,
                record_hash=record_hash,
            )
            self._session.add(audit_record)
            self._session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "audit_write_failed",
                extra={
                    "table_name": table_name,
                    "record_id": str(record_id),
                    "operation": operation.value,
                },
                exc_info=True,
            )
            raise AuditWriteError(
                table_name=table_name,
                record_id=str(record_id),
                operation=operation.value,
                cause=str(exc),
            ) from exc

        logger.info(
            "audit_record_created",
            extra={
                "table_name": table_name,
                "record_id": str(record_id),
                "operation": operation.value,
                "seq": seq,
            },
        )
        return audit_record

    def verify_record(self, audit_record: AuditLogRecord) -> bool:
        """
        Recompute both hashes of a stored record.

        Returns:
            True if the stored snapshots, reason, and identity fields still
            match the hashes written at creation time.
        """
        payload_hash = hash_payload(
            _audit_payload(audit_record.before, audit_record.after, audit_record.reason)
        )
        if payload_hash != audit_record.payload_hash:
            logger.warning(
                "audit_record_tampered",
                extra={"audit_id": str(audit_record.id), "check": "payload_hash"},
            )
            return False

        expected = hash_audit_record(
            table_name=audit_record.table_name,
            record_id=str(audit_record.record_id),
            operation=str(audit_record.operation),
            payload_hash=payload_hash,
            actor_id=str(audit_record.actor_id),
        )
        if expected != audit_record.record_hash:
            logger.warning(
                "audit_record_tampered",
                extra={"audit_id": str(audit_record.id), "check": "record_hash"},
            )
            return False
        return True

    def records_for(self, table_name: str, record_id: UUID) -> list[AuditLogRecord]:
        """Stored records of one row, oldest first."""
        return list(
            self._session.execute(
                select(AuditLogRecord)
                .where(
                    AuditLogRecord.table_name == table_name,
                    AuditLogRecord.record_id == record_id,
                )
                .order_by(AuditLogRecord.occurred_at, AuditLogRecord.seq)
            ).scalars().all()
        )

    def trail_for(self, table_name: str, record_id: UUID) -> AuditTrail:
        """Get the complete audit trail for one row."""
        entries = tuple(
            AuditTrailEntry(
                seq=rec.seq,
                operation=AuditOperation(rec.operation),
                occurred_at=rec.occurred_at,
                actor_id=rec.actor_id,
                effective_role=rec.effective_role,
                changed_fields=tuple(rec.changed_fields or ()),
                reason=rec.reason,
                record_hash=rec.record_hash,
            )
            for rec in self.records_for(table_name, record_id)
        )
        return AuditTrail(table_name=table_name, record_id=record_id, entries=entries)
