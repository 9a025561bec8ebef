"""
Configuration Loader (``gold_config.loader``).

Responsibility
--------------
Loads the ledger YAML file and parses it into the frozen
``gold_config.schema`` dataclasses.  Callers use
``gold_config.get_active_config()``; the parse functions are exposed for
tests and tooling.

Architecture position
---------------------
**Config layer**.  May import ``gold_kernel.exceptions``; the kernel never
imports from here.

Invariants enforced
-------------------
* Unknown top-level keys are rejected, so a typo never silently falls
  back to a default.
* Purities lie in (0, 1]; karat ids are unique.
* Alert percentages lie in [0, 100] and the critical ownership threshold
  is not above the low one.
* Money and weight figures are parsed through ``Decimal(str(value))``; a
  YAML float never becomes a binary float in the ledger.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Structurally invalid content  -> ``ConfigurationError`` naming the key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from gold_config.schema import (
    AlertThresholds,
    ConcurrencyDef,
    KaratDef,
    LedgerConfig,
    RoundingDef,
)
from gold_kernel.exceptions import ConfigurationError

_TOP_LEVEL_KEYS = frozenset(
    {
        "config_id",
        "version",
        "currency",
        "lot_selection",
        "rounding",
        "concurrency",
        "alerts",
        "karats",
    }
)
_LOT_SELECTIONS = frozenset({"fifo", "lifo"})
_HUNDRED = Decimal("100")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(key: str, value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ConfigurationError(key, f"expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ConfigurationError(key, f"expected a number, got {value!r}") from exc


def parse_karats(data: list[dict[str, Any]]) -> tuple[KaratDef, ...]:
    """
    Parse the purity table.

    Raises:
        ConfigurationError: on a missing id, a duplicate id or a purity
            outside (0, 1].
    """
    karats: list[KaratDef] = []
    seen: set[str] = set()
    for index, entry in enumerate(data):
        key = f"karats[{index}]"
        if not isinstance(entry, dict) or not entry.get("karat_id"):
            raise ConfigurationError(key, "each karat needs a karat_id")
        karat_id = str(entry["karat_id"])
        if karat_id in seen:
            raise ConfigurationError(key, f"duplicate karat_id {karat_id!r}")
        purity = parse_decimal(f"{key}.purity", entry.get("purity"))
        if not (Decimal("0") < purity <= Decimal("1")):
            raise ConfigurationError(f"{key}.purity", f"purity must be in (0, 1], got {purity}")
        seen.add(karat_id)
        karats.append(KaratDef(karat_id=karat_id, purity=purity, label=str(entry.get("label", ""))))
    return tuple(karats)


def parse_rounding(data: dict[str, Any]) -> RoundingDef:
    rounding = RoundingDef(
        weight_decimals=int(data.get("weight_decimals", 3)),
        money_decimals=int(data.get("money_decimals", 2)),
    )
    if not (0 <= rounding.weight_decimals <= 9 and 0 <= rounding.money_decimals <= 9):
        raise ConfigurationError("rounding", "decimal places must be between 0 and 9")
    return rounding


def parse_concurrency(data: dict[str, Any]) -> ConcurrencyDef:
    concurrency = ConcurrencyDef(
        lock_timeout_seconds=float(data.get("lock_timeout_seconds", 10.0)),
        max_retry_attempts=int(data.get("max_retry_attempts", 3)),
        retry_backoff_seconds=float(data.get("retry_backoff_seconds", 0.05)),
    )
    if concurrency.lock_timeout_seconds <= 0:
        raise ConfigurationError("concurrency.lock_timeout_seconds", "must be positive")
    if concurrency.max_retry_attempts < 1:
        raise ConfigurationError("concurrency.max_retry_attempts", "must be at least 1")
    if concurrency.retry_backoff_seconds < 0:
        raise ConfigurationError("concurrency.retry_backoff_seconds", "must not be negative")
    return concurrency


def parse_alerts(data: dict[str, Any]) -> AlertThresholds:
    defaults = AlertThresholds()
    thresholds = AlertThresholds(
        low_ownership_percent=parse_decimal(
            "alerts.low_ownership_percent",
            data.get("low_ownership_percent", defaults.low_ownership_percent),
        ),
        critical_ownership_percent=parse_decimal(
            "alerts.critical_ownership_percent",
            data.get("critical_ownership_percent", defaults.critical_ownership_percent),
        ),
        outstanding_high_amount=parse_decimal(
            "alerts.outstanding_high_amount",
            data.get("outstanding_high_amount", defaults.outstanding_high_amount),
        ),
        credit_near_limit_percent=parse_decimal(
            "alerts.credit_near_limit_percent",
            data.get("credit_near_limit_percent", defaults.credit_near_limit_percent),
        ),
        credit_high_percent=parse_decimal(
            "alerts.credit_high_percent",
            data.get("credit_high_percent", defaults.credit_high_percent),
        ),
    )
    for name in (
        "low_ownership_percent",
        "critical_ownership_percent",
        "credit_near_limit_percent",
        "credit_high_percent",
    ):
        value = getattr(thresholds, name)
        if not (0 <= value <= _HUNDRED):
            raise ConfigurationError(f"alerts.{name}", f"percentage must be in [0, 100], got {value}")
    if thresholds.critical_ownership_percent > thresholds.low_ownership_percent:
        raise ConfigurationError(
            "alerts.critical_ownership_percent", "must not exceed low_ownership_percent"
        )
    if thresholds.outstanding_high_amount < 0:
        raise ConfigurationError("alerts.outstanding_high_amount", "must not be negative")
    return thresholds


def parse_ledger_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a ``LedgerConfig`` from the root YAML dict.

    Postconditions:
        - ``checksum`` is the SHA-256 of ``data``.
    Raises:
        ConfigurationError: on unknown keys or invalid values.
    """
    unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigurationError(unknown[0], "unknown configuration key")
    for required in ("config_id", "currency"):
        if not data.get(required):
            raise ConfigurationError(required, "required key is missing")

    currency = str(data["currency"])
    if len(currency) != 3 or not currency.isalpha():
        raise ConfigurationError("currency", f"expected an ISO 4217 code, got {currency!r}")

    lot_selection = str(data.get("lot_selection", "fifo")).lower()
    if lot_selection not in _LOT_SELECTIONS:
        raise ConfigurationError("lot_selection", f"expected one of {sorted(_LOT_SELECTIONS)}")

    return LedgerConfig(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        currency=currency.upper(),
        default_lot_selection=lot_selection,
        rounding=parse_rounding(data.get("rounding") or {}),
        concurrency=parse_concurrency(data.get("concurrency") or {}),
        alerts=parse_alerts(data.get("alerts") or {}),
        karats=parse_karats(data.get("karats") or []),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
