"""
Chart-of-accounts seeding from configuration.

Upserts each configured seed account through ``AccountService`` and
reports, per code, whether it was created or already present.  Existing
accounts are never modified.
"""

from __future__ import annotations

import logging

from ledger_config.schema import LedgerSettings
from ledger_kernel.domain.context import RequestContext
from ledger_kernel.domain.dtos import UpsertResult
from ledger_kernel.services.account_service import AccountService

_logger = logging.getLogger("ledger_kernel.config")


def seed_chart_of_accounts(
    service: AccountService,
    ctx: RequestContext,
    settings: LedgerSettings,
) -> list[UpsertResult]:
    """Upsert every configured account; does not commit."""
    results = [
        service.upsert_account(ctx, account.code, account.name, account.account_type)
        for account in settings.chart_of_accounts
    ]
    _logger.info(
        "chart_of_accounts_seeded",
        extra={
            "created": sum(1 for r in results if r.created),
            "already_exists": sum(1 for r in results if not r.created),
        },
    )
    return results
