"""
Chart of accounts: creation, upsert, resolution and deactivation.
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import UpsertOutcome
from ledger_kernel.exceptions import (
    AccountInUseError,
    DuplicateCodeError,
    InvalidTypeError,
    PermissionDeniedError,
    UnknownAccountError,
)
from ledger_kernel.models.account import AccountType, NormalBalance
from ledger_kernel.models.audit_log import AuditOperation
from ledger_kernel.services.auditor_service import AuditorService
from ledger_kernel.services.ledger_orchestrator import LedgerOrchestrator


class TestCreateAccount:

    def test_create_returns_active_account(self, orchestrator, admin_ctx):
        info = orchestrator.create_account(admin_ctx, "1000-CASH", "Cash", AccountType.ASSET)

        assert info.code == "1000-CASH"
        assert info.name == "Cash"
        assert info.account_type == AccountType.ASSET
        assert info.is_active is True

    @pytest.mark.parametrize(
        "account_type, expected",
        [
            (AccountType.ASSET, NormalBalance.DEBIT),
            (AccountType.EXPENSE, NormalBalance.DEBIT),
            (AccountType.LIABILITY, NormalBalance.CREDIT),
            (AccountType.EQUITY, NormalBalance.CREDIT),
            (AccountType.REVENUE, NormalBalance.CREDIT),
        ],
    )
    def test_normal_balance_follows_type(self, orchestrator, admin_ctx, account_type, expected):
        info = orchestrator.create_account(admin_ctx, "7000", "Any", account_type)
        assert info.normal_balance == expected

    def test_duplicate_code_rejected(self, orchestrator, admin_ctx):
        orchestrator.create_account(admin_ctx, "1000-CASH", "Cash", AccountType.ASSET)

        with pytest.raises(DuplicateCodeError) as exc_info:
            orchestrator.create_account(admin_ctx, "1000-CASH", "Petty Cash", AccountType.ASSET)

        assert exc_info.value.account_code == "1000-CASH"
        assert exc_info.value.kind == "validation"
        assert orchestrator.resolve_account("1000-CASH").name == "Cash"

    def test_type_accepted_case_insensitively(self, orchestrator, admin_ctx):
        info = orchestrator.create_account(admin_ctx, "4000", "Sales", "Revenue")
        assert info.account_type == AccountType.REVENUE

    def test_unknown_type_rejected(self, orchestrator, admin_ctx):
        with pytest.raises(InvalidTypeError) as exc_info:
            orchestrator.create_account(admin_ctx, "9000", "Mystery", "contra")

        assert exc_info.value.account_type == "contra"
        assert "asset" in exc_info.value.allowed

    def test_author_cannot_create_accounts(self, orchestrator, author_ctx):
        with pytest.raises(PermissionDeniedError):
            orchestrator.create_account(author_ctx, "1000", "Cash", AccountType.ASSET)

    def test_creation_is_audited(self, orchestrator, admin_ctx):
        info = orchestrator.create_account(admin_ctx, "1000", "Cash", AccountType.ASSET)

        trail = orchestrator.auditor.trail_for(AuditorService.ACCOUNTS, info.id)
        assert trail.operations == (AuditOperation.INSERT,)
        assert trail.entries[0].effective_role == "admin"


class TestUpsertAccount:

    def test_first_call_creates(self, orchestrator, admin_ctx):
        result = orchestrator.upsert_account(admin_ctx, "1000", "Cash", AccountType.ASSET)

        assert result.outcome == UpsertOutcome.CREATED
        assert result.created
        assert result.key == "1000"

    def test_second_call_reports_existing_and_changes_nothing(self, orchestrator, admin_ctx):
        first = orchestrator.upsert_account(admin_ctx, "1000", "Cash", AccountType.ASSET)
        second = orchestrator.upsert_account(admin_ctx, "1000", "Renamed", AccountType.ASSET)

        assert second.outcome == UpsertOutcome.ALREADY_EXISTS
        assert second.record_id == first.record_id
        assert orchestrator.resolve_account("1000").name == "Cash"


class TestResolveAccount:

    def test_unknown_code(self, orchestrator):
        with pytest.raises(UnknownAccountError) as exc_info:
            orchestrator.resolve_account("NOPE")
        assert exc_info.value.reason == "not found"

    def test_inactive_account_does_not_resolve(self, orchestrator, admin_ctx, standard_accounts):
        orchestrator.deactivate_account(admin_ctx, "5200")

        with pytest.raises(UnknownAccountError) as exc_info:
            orchestrator.resolve_account("5200")
        assert exc_info.value.reason == "inactive"

    def test_get_account_ignores_active_flag(self, orchestrator, admin_ctx, standard_accounts):
        orchestrator.deactivate_account(admin_ctx, "5200")

        info = orchestrator.accounts.get_account("5200")
        assert info.is_active is False

    def test_list_active_only(self, orchestrator, admin_ctx, standard_accounts):
        orchestrator.deactivate_account(admin_ctx, "5200")

        all_codes = [a.code for a in orchestrator.accounts.list_accounts()]
        active_codes = [a.code for a in orchestrator.accounts.list_accounts(active_only=True)]

        assert "5200" in all_codes
        assert "5200" not in active_codes
        assert all_codes == sorted(all_codes)


class TestDeactivateAccount:

    def test_deactivate_unknown(self, orchestrator, admin_ctx):
        with pytest.raises(UnknownAccountError):
            orchestrator.deactivate_account(admin_ctx, "NOPE")

    def test_deactivate_is_idempotent(self, orchestrator, admin_ctx, standard_accounts):
        first = orchestrator.deactivate_account(admin_ctx, "5200")
        second = orchestrator.deactivate_account(admin_ctx, "5200")

        assert first.is_active is False
        assert second.is_active is False
        trail = orchestrator.auditor.trail_for(AuditorService.ACCOUNTS, first.id)
        assert trail.operations == (AuditOperation.INSERT, AuditOperation.UPDATE)
        assert trail.entries[1].changed_fields == ("is_active",)

    def test_in_use_account_deactivates_by_default(
        self, orchestrator, admin_ctx, posted_entry
    ):
        info = orchestrator.deactivate_account(admin_ctx, "1000")
        assert info.is_active is False

    def test_policy_blocks_deactivation_of_account_in_use(
        self, session, deterministic_clock, admin_ctx, posted_entry
    ):
        strict = LedgerOrchestrator(
            session, deterministic_clock, block_deactivation_in_use=True
        )

        with pytest.raises(AccountInUseError) as exc_info:
            strict.deactivate_account(admin_ctx, "1000")

        assert exc_info.value.period_name == "2026-10"
        assert strict.resolve_account("1000").is_active is True

    def test_policy_allows_accounts_without_activity(
        self, session, deterministic_clock, admin_ctx, posted_entry
    ):
        strict = LedgerOrchestrator(
            session, deterministic_clock, block_deactivation_in_use=True
        )
        assert strict.deactivate_account(admin_ctx, "5200").is_active is False

    def test_inactive_account_blocks_posting(
        self, orchestrator, admin_ctx, moderator_ctx, make_draft, standard_accounts, current_period
    ):
        entry_id = make_draft([("5200", "40.00", None), ("1000", None, "40.00")])
        orchestrator.deactivate_account(admin_ctx, "5200")

        with pytest.raises(UnknownAccountError) as exc_info:
            orchestrator.post(moderator_ctx, entry_id)

        assert exc_info.value.account_code == "5200"
        assert orchestrator.get_entry(admin_ctx.owner_id, entry_id).posted is False
        assert orchestrator.selector.account_activity(admin_ctx.owner_id, "5200") == Decimal("0.00")
