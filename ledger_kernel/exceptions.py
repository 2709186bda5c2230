"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A ledger must tell its callers precisely why an operation was refused.
Callers catch by type, read a machine-readable ``code``, and pull structured
context (the imbalance, the offending account, the locked period) from
attributes instead of parsing messages.

Every exception carries:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. A KIND class attribute (how the caller should react)
  4. Structured DATA attributes (not just a message string)

Example:
    try:
        journal.post(ctx, entry_id)
    except UnbalancedEntryError as e:
        show(f"Entry is out of balance by {e.difference}")
    except PeriodLockedError as e:
        show(f"Period {e.period_name} is {e.period_status}; reopen it or redate")

===============================================================================
EXCEPTION KINDS
===============================================================================

Kind         | Meaning                                  | Caller reaction
-------------|------------------------------------------|-----------------------------
validation   | Input is wrong                           | Fix input, no retry
state        | Misuse of the entry/period state machine | Re-read state, then retry
policy       | A business rule blocks the action        | Show guidance, never retry
consistency  | Audit write failed, transaction aborted  | Retry the whole operation
not_found    | Referenced record does not exist         | Fix reference

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- UnbalancedEntryError
    |   +-- UnknownAccountError
    |   +-- DuplicateCodeError
    |   +-- InvalidTypeError
    |   +-- InvalidLineError
    |   +-- InvalidReversalDateError
    |   +-- InvalidPeriodRangeError
    |
    +-- StateError
    |   +-- ImmutableEntryError
    |   +-- AlreadyPostedError
    |   +-- InvalidTransitionError
    |   +-- EntryNotPostedError
    |   +-- EntryAlreadyReversedError
    |   +-- ImmutabilityViolationError
    |
    +-- PolicyError
    |   +-- PeriodLockedError
    |   +-- PeriodOverlapError
    |   +-- AccountInUseError
    |   +-- PermissionDeniedError
    |
    +-- ConsistencyError
    |   +-- AuditWriteError
    |
    +-- NotFoundError
        +-- EntryNotFoundError
        +-- LineNotFoundError
        +-- PeriodNotFoundError

===============================================================================
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses define a ``code`` for machine-readable identification
    and inherit a ``kind`` from their category base.
    """

    code: str = "LEDGER_KERNEL_ERROR"
    kind: str = "internal"


# Validation errors


class ValidationError(LedgerKernelError):
    """Base class for caller-correctable input errors."""

    code: str = "VALIDATION_ERROR"
    kind: str = "validation"


class UnbalancedEntryError(ValidationError):
    """
    Journal entry debits do not equal credits, or the entry has too few lines.

    ``difference`` is ``debits - credits`` and is the amount shown to the user.
    """

    code: str = "UNBALANCED_ENTRY"

    def __init__(
        self,
        debits: Decimal,
        credits: Decimal,
        line_count: int | None = None,
        entry_id: str | None = None,
    ):
        self.debits = debits
        self.credits = credits
        self.difference = debits - credits
        self.line_count = line_count
        self.entry_id = entry_id
        if line_count is not None and line_count < 2:
            detail = f"entry has {line_count} line(s), at least 2 are required"
        else:
            detail = f"debits={debits}, credits={credits}, difference={self.difference}"
        super().__init__(f"Unbalanced entry: {detail}")


class UnknownAccountError(ValidationError):
    """Account code does not exist or is inactive."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, account_code: str, reason: str = "not found"):
        self.account_code = account_code
        self.reason = reason
        super().__init__(f"Unknown account '{account_code}': {reason}")


class DuplicateCodeError(ValidationError):
    """Account code already exists."""

    code: str = "DUPLICATE_CODE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account code already exists: {account_code}")


class InvalidTypeError(ValidationError):
    """Account type is not one of the enumerated types."""

    code: str = "INVALID_ACCOUNT_TYPE"

    def __init__(self, account_type: str, allowed: tuple[str, ...]):
        self.account_type = account_type
        self.allowed = allowed
        super().__init__(
            f"Invalid account type '{account_type}'; expected one of {', '.join(allowed)}"
        )


class InvalidLineError(ValidationError):
    """Journal line amounts violate the one-sided, non-negative rule."""

    code: str = "INVALID_LINE"

    def __init__(self, reason: str, account_code: str | None = None):
        self.reason = reason
        self.account_code = account_code
        super().__init__(f"Invalid journal line: {reason}")


class InvalidReversalDateError(ValidationError):
    """Reversal date precedes the original entry date."""

    code: str = "INVALID_REVERSAL_DATE"

    def __init__(self, entry_id: str, entry_date: str, reversal_date: str):
        self.entry_id = entry_id
        self.entry_date = entry_date
        self.reversal_date = reversal_date
        super().__init__(
            f"Reversal date {reversal_date} is before entry date {entry_date} "
            f"of entry {entry_id}"
        )


class InvalidPeriodRangeError(ValidationError):
    """Fiscal period start date is after its end date."""

    code: str = "INVALID_PERIOD_RANGE"

    def __init__(self, start_date: str, end_date: str):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(f"Period start {start_date} is after end {end_date}")


# State errors


class StateError(LedgerKernelError):
    """Base class for misuse of a state machine."""

    code: str = "STATE_ERROR"
    kind: str = "state"


class ImmutableEntryError(StateError):
    """A posted journal entry (or one of its lines) cannot be changed."""

    code: str = "IMMUTABLE_ENTRY"

    def __init__(self, entry_id: str, operation: str = "modify"):
        self.entry_id = entry_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} posted journal entry {entry_id}; "
            "post a reversal instead"
        )


class AlreadyPostedError(StateError):
    """Entry is already posted; posting is not idempotent."""

    code: str = "ALREADY_POSTED"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry {entry_id} is already posted")


class InvalidTransitionError(StateError):
    """Requested status transition is not allowed from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        target_status: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        message = (
            f"Cannot move {entity_type} {entity_id} from "
            f"'{current_status}' to '{target_status}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class EntryNotPostedError(StateError):
    """Only posted entries can be reversed."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry {entry_id} is not posted and cannot be reversed")


class EntryAlreadyReversedError(StateError):
    """Entry already has a reversal."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversed_by_id: str | None = None):
        self.entry_id = entry_id
        self.reversed_by_id = reversed_by_id
        super().__init__(
            f"Journal entry {entry_id} has already been reversed"
            + (f" by {reversed_by_id}" if reversed_by_id else "")
        )


class ImmutabilityViolationError(StateError):
    """Attempt to modify an append-only or structurally frozen record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


# Policy errors


class PolicyError(LedgerKernelError):
    """Base class for business-rule blocks."""

    code: str = "POLICY_ERROR"
    kind: str = "policy"


class PeriodLockedError(PolicyError):
    """
    Date falls in a closed or locked period, or in no period at all.

    ``period_name`` and ``period_status`` are None / "missing" when no
    period covers the date.
    """

    code: str = "PERIOD_LOCKED"

    def __init__(
        self,
        entry_date: str,
        period_name: str | None = None,
        period_status: str = "missing",
    ):
        self.entry_date = entry_date
        self.period_name = period_name
        self.period_status = period_status
        if period_name is None:
            message = f"No fiscal period covers {entry_date}; create or open one"
        else:
            message = (
                f"Fiscal period {period_name} covering {entry_date} is "
                f"{period_status}; reopen the period or use another date"
            )
        super().__init__(message)


class PeriodOverlapError(PolicyError):
    """New period date range overlaps an existing period of the same owner."""

    code: str = "PERIOD_OVERLAP"

    def __init__(self, name: str, existing_name: str):
        self.name = name
        self.existing_name = existing_name
        super().__init__(f"Period {name} overlaps existing period {existing_name}")


class AccountInUseError(PolicyError):
    """Account has activity in an open period and policy blocks deactivation."""

    code: str = "ACCOUNT_IN_USE"

    def __init__(self, account_code: str, period_name: str):
        self.account_code = account_code
        self.period_name = period_name
        super().__init__(
            f"Account {account_code} has posted activity in open period "
            f"{period_name}; use a different account or close the period first"
        )


class PermissionDeniedError(PolicyError):
    """Effective role lacks the permission required by the operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, role: str, permission: str):
        self.role = role
        self.permission = permission
        super().__init__(f"Role '{role}' lacks permission '{permission}'")


# Consistency errors


class ConsistencyError(LedgerKernelError):
    """Base class for errors that abort the enclosing transaction."""

    code: str = "CONSISTENCY_ERROR"
    kind: str = "consistency"


class AuditWriteError(ConsistencyError):
    """Audit log record could not be written; the mutation must roll back."""

    code: str = "AUDIT_WRITE_FAILED"

    def __init__(self, table_name: str, record_id: str, operation: str, cause: str):
        self.table_name = table_name
        self.record_id = record_id
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"Audit write failed for {operation} on {table_name}/{record_id}: {cause}"
        )


# Not-found errors


class NotFoundError(LedgerKernelError):
    """Base class for missing references."""

    code: str = "NOT_FOUND"
    kind: str = "not_found"


class EntryNotFoundError(NotFoundError):
    """Journal entry does not exist for this owner."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class LineNotFoundError(NotFoundError):
    """Journal line does not exist for this owner."""

    code: str = "LINE_NOT_FOUND"

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"Journal line not found: {line_id}")


class PeriodNotFoundError(NotFoundError):
    """Fiscal period does not exist for this owner."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Fiscal period not found: {period_id}")
