"""
Typed settings for the ledger (``ledger_config.schema``).

Every settings object is a frozen dataclass produced by
``ledger_config.loader``.  No parsing or I/O happens here.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AccountPolicy:
    """Chart-of-accounts policy switches."""

    block_deactivation_in_use: bool = False


@dataclass(frozen=True)
class PeriodPolicy:
    """Fiscal period policy switches."""

    auto_create_next_period: bool = True


@dataclass(frozen=True)
class SubledgerAccounts:
    """Control account codes used by the AP and AR document modules."""

    accounts_payable: str
    accounts_receivable: str
    cash: str


@dataclass(frozen=True)
class SeedAccount:
    """One row of the configured chart of accounts."""

    code: str
    name: str
    account_type: str


@dataclass(frozen=True)
class LedgerSettings:
    """Resolved ledger configuration."""

    database_url: str
    subledger: SubledgerAccounts
    echo_sql: bool = False
    currency: str = "USD"
    log_level: str = "INFO"
    accounts: AccountPolicy = field(default_factory=AccountPolicy)
    periods: PeriodPolicy = field(default_factory=PeriodPolicy)
    chart_of_accounts: tuple[SeedAccount, ...] = ()

    def seed_account(self, code: str) -> SeedAccount | None:
        for account in self.chart_of_accounts:
            if account.code == code:
                return account
        return None
