"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers for journal entries (one sequence
    per ledger owner) and for subsidiary document numbers.  Uses a
    dedicated counter table with row-level locking (``SELECT ... FOR
    UPDATE``) so concurrent allocations never collide.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by JournalService (entry numbers) and the AR module (credit
    note numbers).

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  Aggregate max()+1 is never used.
    - Transactional: an increment is only visible after the caller's
      transaction commits; a rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).

Audit relevance:
    Allocation is logged at DEBUG with sequence_name and value.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly increasing
        integer.  The increment commits with the caller's transaction.

    Guarantees:
        - ``SELECT ... FOR UPDATE`` serializes allocations on PostgreSQL;
          on SQLite the BEGIN IMMEDIATE write lock does the same.
        - No value is handed out twice for one sequence name.

    Non-goals:
        - Does NOT call ``session.commit()``.

    Usage:
        number = SequenceService(session).next_value(
            SequenceService.journal_entry_sequence(owner_id)
        )
    """

    JOURNAL_ENTRY = "journal_entry"
    CREDIT_NOTE = "credit_note"

    def __init__(self, session: Session):
        self._session = session

    @classmethod
    def journal_entry_sequence(cls, owner_id: UUID) -> str:
        """Entry numbers are allocated per ledger owner."""
        return f"{cls.JOURNAL_ENTRY}:{owner_id}"

    @classmethod
    def credit_note_sequence(cls, owner_id: UUID, year: int) -> str:
        return f"{cls.CREDIT_NOTE}:{owner_id}:{year}"

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0 strictly greater than any previously
              returned value for this sequence name.
            - The counter row stays locked until the transaction completes.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use; another transaction may create the row concurrently
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
