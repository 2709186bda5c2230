"""
ledger_config -- settings for the Book Explorer ledger.

Responsibility:
    Loads ``LedgerSettings`` from the bundled ``defaults.yaml``, an optional
    user YAML file and environment overrides, and seeds the configured
    chart of accounts.

Architecture position:
    Configuration.  Sits above ``ledger_kernel`` and beside
    ``ledger_modules``.  The kernel MUST NEVER import from
    ``ledger_config``.

Failure modes:
    - ``ConfigError`` for malformed values.
    - ``FileNotFoundError`` for a missing user file.
"""

from ledger_config.loader import ConfigError, compute_checksum, load_settings
from ledger_config.schema import (
    AccountPolicy,
    LedgerSettings,
    PeriodPolicy,
    SeedAccount,
    SubledgerAccounts,
)
from ledger_config.seed import seed_chart_of_accounts

__all__ = [
    "AccountPolicy",
    "ConfigError",
    "LedgerSettings",
    "PeriodPolicy",
    "SeedAccount",
    "SubledgerAccounts",
    "compute_checksum",
    "load_settings",
    "seed_chart_of_accounts",
]
