"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.auditor_service import AuditorService, AuditTrail, AuditTrailEntry
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.ledger_orchestrator import LedgerOrchestrator
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.reversal_service import ReversalService
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "AccountService",
    "AuditorService",
    "AuditTrail",
    "AuditTrailEntry",
    "JournalService",
    "LedgerOrchestrator",
    "PeriodService",
    "ReversalService",
    "SequenceService",
]
