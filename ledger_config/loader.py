"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads the bundled ``defaults.yaml``, deep-merges an optional user YAML
file over it, applies environment overrides, and parses the result into
the frozen dataclasses of ``ledger_config.schema``.

Architecture position
---------------------
**Config layer**.  Sits above ``ledger_kernel``: the kernel never imports
from ``ledger_config``; callers hand the parsed values to kernel
constructors (see ``LedgerOrchestrator.from_settings``).

Invariants enforced
-------------------
* Every parse error raises ``ConfigError`` naming the offending key; no
  silent defaults for malformed values.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing user YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong types or unknown account types  -> ``ConfigError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
from dataclasses import asdict
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    AccountPolicy,
    LedgerSettings,
    PeriodPolicy,
    SeedAccount,
    SubledgerAccounts,
)

_logger = logging.getLogger("ledger_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

ENV_CONFIG_PATH = "LEDGER_CONFIG"
ENV_DATABASE_URL = "LEDGER_DATABASE_URL"
ENV_LOG_LEVEL = "LEDGER_LOG_LEVEL"

_ACCOUNT_TYPES = frozenset({"asset", "liability", "equity", "revenue", "expense"})
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class ConfigError(ValueError):
    """A configuration value is missing or malformed.

    Attributes:
        key: Dotted path of the offending key.
    """

    code: str = "CONFIG_INVALID"

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"Invalid configuration at '{key}': {message}")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(str(path), "top level must be a mapping")
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` merged in; nested dicts merge, lists replace."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(key, "must be a mapping")
    return value


def _bool(section: dict[str, Any], key: str, path: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{path}.{key}", f"expected true/false, got {value!r}")
    return value


def _code(section: dict[str, Any], key: str, path: str) -> str:
    value = section.get(key)
    if value is None or str(value).strip() == "":
        raise ConfigError(f"{path}.{key}", "account code is required")
    return str(value)


def parse_chart_of_accounts(rows: Any) -> tuple[SeedAccount, ...]:
    """Parse the ``chart_of_accounts`` list."""
    if rows is None:
        return ()
    if not isinstance(rows, list):
        raise ConfigError("chart_of_accounts", "must be a list")

    accounts: list[SeedAccount] = []
    seen: set[str] = set()
    for i, row in enumerate(rows):
        path = f"chart_of_accounts[{i}]"
        if not isinstance(row, dict):
            raise ConfigError(path, "must be a mapping")
        try:
            code = str(row["code"])
            name = str(row["name"])
            account_type = str(row["type"]).lower()
        except KeyError as exc:
            raise ConfigError(f"{path}.{exc.args[0]}", "is required") from None
        if account_type not in _ACCOUNT_TYPES:
            raise ConfigError(f"{path}.type", f"unknown account type {account_type!r}")
        if code in seen:
            raise ConfigError(f"{path}.code", f"duplicate code {code!r}")
        seen.add(code)
        accounts.append(SeedAccount(code=code, name=name, account_type=account_type))
    return tuple(accounts)


def parse_settings(data: dict[str, Any]) -> LedgerSettings:
    """
    Parse a merged configuration dict into ``LedgerSettings``.

    Raises:
        ConfigError: on any missing or malformed value.
    """
    database = _section(data, "database")
    database_url = database.get("url")
    if not database_url or not isinstance(database_url, str):
        raise ConfigError("database.url", "a database URL string is required")

    currency = str(data.get("currency", "USD"))
    if not _CURRENCY_RE.match(currency):
        raise ConfigError("currency", f"expected a 3-letter code, got {currency!r}")

    log_level = str(_section(data, "logging").get("level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError("logging.level", f"unknown level {log_level!r}")

    accounts = _section(data, "accounts")
    periods = _section(data, "periods")
    subledger = _section(data, "subledger")

    return LedgerSettings(
        database_url=database_url,
        echo_sql=_bool(database, "echo_sql", "database", False),
        currency=currency,
        log_level=log_level,
        accounts=AccountPolicy(
            block_deactivation_in_use=_bool(
                accounts, "block_deactivation_in_use", "accounts", False
            ),
        ),
        periods=PeriodPolicy(
            auto_create_next_period=_bool(
                periods, "auto_create_next_period", "periods", True
            ),
        ),
        subledger=SubledgerAccounts(
            accounts_payable=_code(subledger, "accounts_payable", "subledger"),
            accounts_receivable=_code(subledger, "accounts_receivable", "subledger"),
            cash=_code(subledger, "cash", "subledger"),
        ),
        chart_of_accounts=parse_chart_of_accounts(data.get("chart_of_accounts")),
    )


def _apply_env_overrides(data: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if environ.get(ENV_DATABASE_URL):
        overrides["database"] = {"url": environ[ENV_DATABASE_URL]}
    if environ.get(ENV_LOG_LEVEL):
        overrides["logging"] = {"level": environ[ENV_LOG_LEVEL]}
    return deep_merge(data, overrides)


def load_settings(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> LedgerSettings:
    """
    Load ledger settings.

    Resolution order, later wins:
        1. bundled ``defaults.yaml``
        2. user YAML from ``path``, else from ``$LEDGER_CONFIG``
        3. ``$LEDGER_DATABASE_URL`` and ``$LEDGER_LOG_LEVEL``

    Raises:
        FileNotFoundError: user file does not exist.
        ConfigError: merged values are malformed.
    """
    env = os.environ if environ is None else environ
    data = load_yaml_file(DEFAULTS_PATH)

    user_path = path if path is not None else env.get(ENV_CONFIG_PATH)
    if user_path:
        data = deep_merge(data, load_yaml_file(Path(user_path)))

    data = _apply_env_overrides(data, env)
    settings = parse_settings(data)

    _logger.info(
        "ledger_config_loaded",
        extra={
            "config_source": str(user_path) if user_path else "defaults",
            "checksum": compute_checksum(settings),
            "seed_accounts": len(settings.chart_of_accounts),
        },
    )
    return settings


def compute_checksum(settings: LedgerSettings) -> str:
    """
    SHA-256 of the canonical JSON form of the settings.

    Excludes the database URL.
    """
    data = asdict(settings)
    data.pop("database_url", None)
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
