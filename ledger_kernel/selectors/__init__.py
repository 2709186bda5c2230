"""Selectors for the ledger kernel (read side)."""

from ledger_kernel.selectors.journal_selector import (
    BalanceViolation,
    JournalSelector,
)

__all__ = [
    "BalanceViolation",
    "JournalSelector",
]
