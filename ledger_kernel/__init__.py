"""
Ledger Kernel - double-entry core of the Book Explorer ledger

A draft/post journal engine with:
- Exact, integer minor-unit balance validation
- Compare-and-set posting (no double posting)
- Posted-entry immutability, corrections by reversal only
- Fiscal period gating (fail-closed)
- Synchronous, append-only audit log
"""

__version__ = "0.1.0"
