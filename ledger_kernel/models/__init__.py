"""Domain models for the ledger kernel."""

from ledger_kernel.models.account import Account, AccountType, NormalBalance
from ledger_kernel.models.audit_log import AuditLogRecord, AuditOperation
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.models.journal import JournalEntry, JournalLine
from ledger_kernel.models.sequence import SequenceCounter

__all__ = [
    "Account",
    "AccountType",
    "AuditLogRecord",
    "AuditOperation",
    "FiscalPeriod",
    "JournalEntry",
    "JournalLine",
    "NormalBalance",
    "PeriodStatus",
    "SequenceCounter",
]
