"""
Module: ledger_kernel.models.audit_log
Responsibility: ORM persistence for the append-only audit log.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Records are never updated or deleted (ORM listeners in
      db/immutability.py).
    - record_hash = H(table_name | record_id | operation | payload_hash | actor_id),
      so any edit of the stored snapshots is detectable.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.

Audit relevance:
    This IS the audit log.  One row per mutation of a financial table,
    written in the same transaction as the mutation.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime, UUIDString


class AuditOperation(str, Enum):
    """Kinds of audited mutations."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    POST = "post"
    REVERSE = "reverse"
    REOPEN = "reopen"


class AuditLogRecord(Base):
    """
    Immutable record of one financial mutation.

    Contract:
        Append-only.  ``before``/``after`` are JSON snapshots of the row
        (None for insert/delete respectively); ``changed_fields`` lists the
        keys whose values differ between them.

    Guarantees:
        - actor_id and effective_role always identify who acted and as what.
        - payload_hash and record_hash are computed by AuditorService.
    """

    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_record", "table_name", "record_id"),
        Index("idx_audit_owner_time", "owner_id", "occurred_at"),
        Index("idx_audit_operation", "operation"),
        Index("idx_audit_seq", "owner_id", "seq"),
    )

    # Per-owner allocation order (SequenceService)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    table_name: Mapped[str] = mapped_column(String(64), nullable=False)

    record_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    effective_role: Mapped[str] = mapped_column(String(20), nullable=False)

    operation: Mapped[AuditOperation] = mapped_column(String(20), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    before: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    after: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    changed_fields: Mapped[list | None] = mapped_column(JSON, nullable=True)

    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    record_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLogRecord {self.operation} on {self.table_name}:{self.record_id}>"
