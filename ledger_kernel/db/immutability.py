"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Posted journal entries are the financial record.  They are never edited or
deleted; a mistake is corrected by posting a reversal, which leaves a
visible trail.  The audit log is append-only from the moment a row exists.

Services already refuse these mutations before touching the session.  The
listeners in this module catch the same mutations when they arrive through
any other ORM path (a stray attribute assignment, a session.delete()).

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements are emitted:

    session.flush()
         |
         v
    [before_insert / before_update / before_delete]
         |
         +--> _check_*() --> ImmutableEntryError / ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The posting flip and the reversal link are written with Core
compare-and-set UPDATEs by the journal services, so they never pass through
these listeners.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable                       | What may still change
----------------|--------------------------------------|---------------------------
JournalEntry    | posted = True                        | reversed_by_id, updated_*
JournalLine     | parent entry posted                  | nothing (no insert either)
AuditLogRecord  | always                               | nothing
Account         | structural fields once referenced by | name, is_active
                | a posted line                        |

===============================================================================
USAGE
===============================================================================

Registered by init_engine_from_url() and by the test fixtures:

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, text
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError, ImmutableEntryError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields that may change on a posted entry
ENTRY_FIELDS_MUTABLE_AFTER_POST = frozenset({"reversed_by_id", "updated_at", "updated_by_id"})


def _entry_was_posted(target) -> bool:
    """Posted state as loaded from the database, ignoring pending changes."""
    history = get_history(target, "posted")
    if history.deleted:
        return bool(history.deleted[0])
    if history.added:
        return False
    return bool(target.posted)


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Prevent updates to posted JournalEntry records.

    Only the reversal link and the row's update stamps may change once an
    entry is posted.
    """
    if not _entry_was_posted(target):
        return

    from sqlalchemy import inspect

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in ENTRY_FIELDS_MUTABLE_AFTER_POST:
            continue
        if attr.history.has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "JournalEntry",
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": attr.key,
                },
            )
            raise ImmutableEntryError(entry_id=str(target.id), operation="modify")


def _check_journal_entry_delete(mapper, connection, target):
    """Prevent deletion of posted JournalEntry records."""
    if not _entry_was_posted(target):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "JournalEntry",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutableEntryError(entry_id=str(target.id), operation="delete")


def _parent_entry_posted(connection, target) -> bool:
    """Read the parent's posted flag straight from the database."""
    entry_id = target.journal_entry_id
    if entry_id is None and target.entry is not None:
        entry_id = target.entry.id
    if entry_id is None:
        return False
    row = connection.execute(
        text("SELECT posted FROM journal_entries WHERE id = :entry_id"),
        {"entry_id": str(entry_id)},
    ).first()
    return bool(row and row[0])


def _block_line_change(target, operation: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "JournalLine",
            "entity_id": str(target.id),
            "entry_id": str(target.journal_entry_id),
            "operation": operation,
        },
    )
    verb = {"INSERT": "add lines to", "UPDATE": "modify lines of", "DELETE": "delete lines of"}
    raise ImmutableEntryError(
        entry_id=str(target.journal_entry_id),
        operation=verb[operation],
    )


def _check_journal_line_insert(mapper, connection, target):
    """Prevent adding a line to a posted entry."""
    if _parent_entry_posted(connection, target):
        _block_line_change(target, "INSERT")


def _check_journal_line_immutability(mapper, connection, target):
    """Prevent updates to JournalLine when its parent entry is posted."""
    if _parent_entry_posted(connection, target):
        _block_line_change(target, "UPDATE")


def _check_journal_line_delete(mapper, connection, target):
    """Prevent deletion of JournalLine when its parent entry is posted."""
    if _parent_entry_posted(connection, target):
        _block_line_change(target, "DELETE")


def _check_audit_log_immutability(mapper, connection, target):
    """Audit records are never updated."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditLogRecord",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditLogRecord",
        entity_id=str(target.id),
        reason="Audit records are append-only and cannot be modified",
    )


def _check_audit_log_delete(mapper, connection, target):
    """Audit records are never deleted."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditLogRecord",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditLogRecord",
        entity_id=str(target.id),
        reason="Audit records are append-only and cannot be deleted",
    )


# =============================================================================
# Account Structural Immutability
# =============================================================================
#
# code, account_type and normal_balance decide what historical lines mean.
# They are frozen once any posted line references the account; before that,
# accounts can be freely edited.
# =============================================================================


def account_has_posted_references(connection, account_code: str) -> bool:
    """True if any line of a posted entry books to ``account_code``."""
    result = connection.execute(
        text("""
            SELECT EXISTS (
                SELECT 1 FROM journal_lines jl
                JOIN journal_entries je ON jl.journal_entry_id = je.id
                WHERE jl.account_code = :account_code
                AND je.posted = :posted
            )
        """),
        {"account_code": account_code, "posted": True},
    )
    return bool(result.scalar())


def _check_account_structural_immutability(mapper, connection, target):
    """
    Prevent changes to structural fields on accounts referenced by posted lines.

    Non-structural fields (name, is_active) can still be modified.
    """
    from ledger_kernel.models.account import ACCOUNT_STRUCTURAL_FIELDS

    changed = [
        field for field in ACCOUNT_STRUCTURAL_FIELDS
        if get_history(target, field).has_changes()
    ]
    if not changed:
        return

    code_history = get_history(target, "code")
    stored_code = code_history.deleted[0] if code_history.deleted else target.code

    if account_has_posted_references(connection, stored_code):
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "Account",
                "entity_id": str(target.id),
                "account_code": stored_code,
                "operation": "UPDATE",
                "fields": changed,
            },
        )
        raise ImmutabilityViolationError(
            entity_type="Account",
            entity_id=stored_code,
            reason=(
                f"Cannot modify structural field(s) {changed} "
                "on an account referenced by posted journal entries"
            ),
        )


def _listener_table():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.audit_log import AuditLogRecord
    from ledger_kernel.models.journal import JournalEntry, JournalLine

    return (
        (JournalEntry, "before_update", _check_journal_entry_immutability),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_insert", _check_journal_line_insert),
        (JournalLine, "before_update", _check_journal_line_immutability),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (AuditLogRecord, "before_update", _check_audit_log_immutability),
        (AuditLogRecord, "before_delete", _check_audit_log_delete),
        (Account, "before_update", _check_account_structural_immutability),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; already-registered listeners are skipped.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that deliberately tamper with records
    to verify detection.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
