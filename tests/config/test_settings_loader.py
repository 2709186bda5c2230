"""
Settings loading: bundled defaults, user overrides, environment and seeding.
"""

from pathlib import Path

import pytest
import yaml

from ledger_config import (
    ConfigError,
    LedgerSettings,
    compute_checksum,
    load_settings,
    seed_chart_of_accounts,
)
from ledger_config.loader import deep_merge, parse_chart_of_accounts
from ledger_kernel.domain.dtos import UpsertOutcome
from ledger_kernel.services.ledger_orchestrator import LedgerOrchestrator
from ledger_modules.ap.service import BillService


def _write_yaml(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "ledger.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:

    def test_bundled_defaults(self):
        settings = load_settings(environ={})

        assert isinstance(settings, LedgerSettings)
        assert settings.currency == "USD"
        assert settings.log_level == "INFO"
        assert settings.accounts.block_deactivation_in_use is False
        assert settings.periods.auto_create_next_period is True
        assert settings.subledger.accounts_payable == "2000"
        assert settings.seed_account("4000").account_type == "revenue"
        assert settings.seed_account("9999") is None

    def test_settings_are_frozen(self):
        settings = load_settings(environ={})

        with pytest.raises(AttributeError):
            settings.currency = "EUR"


class TestOverrides:

    def test_user_file_merges_over_defaults(self, tmp_path):
        path = _write_yaml(tmp_path, {"accounts": {"block_deactivation_in_use": True}})

        settings = load_settings(path, environ={})

        assert settings.accounts.block_deactivation_in_use is True
        # Untouched sections keep their defaults
        assert settings.subledger.cash == "1000"

    def test_user_file_from_environment(self, tmp_path):
        path = _write_yaml(tmp_path, {"currency": "GBP"})

        settings = load_settings(environ={"LEDGER_CONFIG": str(path)})

        assert settings.currency == "GBP"

    def test_environment_wins_over_file(self, tmp_path):
        path = _write_yaml(tmp_path, {"database": {"url": "sqlite:///file.db"}})

        settings = load_settings(
            path,
            environ={"LEDGER_DATABASE_URL": "sqlite:///env.db", "LEDGER_LOG_LEVEL": "debug"},
        )

        assert settings.database_url == "sqlite:///env.db"
        assert settings.log_level == "DEBUG"

    def test_missing_user_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml", environ={})

    def test_lists_replace_rather_than_merge(self):
        merged = deep_merge({"a": {"x": 1, "y": [1, 2]}}, {"a": {"y": [3]}})

        assert merged == {"a": {"x": 1, "y": [3]}}


class TestInvalidConfig:

    @pytest.mark.parametrize(
        "override, key",
        [
            ({"currency": "dollars"}, "currency"),
            ({"logging": {"level": "LOUD"}}, "logging.level"),
            ({"accounts": {"block_deactivation_in_use": "yes"}}, "accounts.block_deactivation_in_use"),
            ({"subledger": {"cash": ""}}, "subledger.cash"),
            ({"database": {"url": None}}, "database.url"),
            ({"periods": ["not", "a", "mapping"]}, "periods"),
        ],
    )
    def test_bad_value_names_its_key(self, tmp_path, override, key):
        path = _write_yaml(tmp_path, override)

        with pytest.raises(ConfigError) as exc_info:
            load_settings(path, environ={})

        assert exc_info.value.key == key

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError):
            load_settings(path, environ={})

    def test_unknown_account_type(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_chart_of_accounts([{"code": "1", "name": "X", "type": "income"}])

        assert exc_info.value.key == "chart_of_accounts[0].type"

    def test_duplicate_seed_code(self):
        rows = [
            {"code": "1000", "name": "Cash", "type": "asset"},
            {"code": "1000", "name": "Petty Cash", "type": "asset"},
        ]

        with pytest.raises(ConfigError) as exc_info:
            parse_chart_of_accounts(rows)

        assert exc_info.value.key == "chart_of_accounts[1].code"

    def test_missing_seed_field(self):
        with pytest.raises(ConfigError) as exc_info:
            parse_chart_of_accounts([{"code": "1000", "type": "asset"}])

        assert exc_info.value.key == "chart_of_accounts[0].name"


class TestChecksum:

    def test_deterministic(self):
        assert compute_checksum(load_settings(environ={})) == compute_checksum(load_settings(environ={}))

    def test_ignores_database_url(self):
        a = load_settings(environ={"LEDGER_DATABASE_URL": "sqlite:///a.db"})
        b = load_settings(environ={"LEDGER_DATABASE_URL": "sqlite:///b.db"})

        assert compute_checksum(a) == compute_checksum(b)

    def test_policy_change_changes_checksum(self, tmp_path):
        path = _write_yaml(tmp_path, {"periods": {"auto_create_next_period": False}})

        assert compute_checksum(load_settings(path, environ={})) != compute_checksum(
            load_settings(environ={})
        )


class TestSeeding:

    def test_seed_is_idempotent(self, orchestrator, admin_ctx):
        settings = load_settings(environ={})

        first = seed_chart_of_accounts(orchestrator.accounts, admin_ctx, settings)
        second = seed_chart_of_accounts(orchestrator.accounts, admin_ctx, settings)

        assert len(first) == len(settings.chart_of_accounts)
        assert all(r.outcome == UpsertOutcome.CREATED for r in first)
        assert all(r.outcome == UpsertOutcome.ALREADY_EXISTS for r in second)
        assert orchestrator.resolve_account("5300").name == "Royalty Expense"

    def test_existing_account_left_alone(self, orchestrator, admin_ctx):
        orchestrator.create_account(admin_ctx, "1000", "Operating Cash", "asset")

        results = seed_chart_of_accounts(orchestrator.accounts, admin_ctx, load_settings(environ={}))

        by_code = {r.key: r for r in results}
        assert by_code["1000"].outcome == UpsertOutcome.ALREADY_EXISTS
        assert orchestrator.resolve_account("1000").name == "Operating Cash"


class TestWiring:

    def test_orchestrator_from_settings(self, tmp_path, session, deterministic_clock):
        path = _write_yaml(tmp_path, {"accounts": {"block_deactivation_in_use": True}})
        settings = load_settings(path, environ={})

        orch = LedgerOrchestrator.from_settings(session, settings, deterministic_clock)

        assert orch.accounts._block_deactivation_in_use is True
        assert orch.periods._auto_create_next_period is True

    def test_bill_service_from_settings(self, session, deterministic_clock):
        service = BillService.from_settings(session, load_settings(environ={}), deterministic_clock)

        assert service._ap_code == "2000"
        assert service._cash_code == "1000"
