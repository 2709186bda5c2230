"""Pure utility helpers for the ledger kernel."""
