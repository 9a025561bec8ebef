"""
LedgerConfig schema.

Frozen dataclasses describing the reviewable ledger configuration: the
default currency, rounding of reported figures, lot-selection default,
lock and retry settings, alert thresholds and the karat purity table.
YAML is parsed into these types by ``gold_config.loader``; nothing else
constructs them from files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Karats
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KaratDef:
    """One karat type and its fine-gold purity (fraction in (0, 1])."""

    karat_id: str
    purity: Decimal
    label: str = ""


# ---------------------------------------------------------------------------
# Operational settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoundingDef:
    """Decimal places used when figures are reported (never when stored)."""

    weight_decimals: int = 3
    money_decimals: int = 2


@dataclass(frozen=True)
class ConcurrencyDef:
    lock_timeout_seconds: float = 10.0
    max_retry_attempts: int = 3
    retry_backoff_seconds: float = 0.05


@dataclass(frozen=True)
class AlertThresholds:
    """
    Ownership alert thresholds.

    Percentages are 0-100.  ``low_ownership_percent`` raises a Medium
    LowOwnership alert, ``critical_ownership_percent`` raises it to High.
    """

    low_ownership_percent: Decimal = Decimal("50")
    critical_ownership_percent: Decimal = Decimal("25")
    outstanding_high_amount: Decimal = Decimal("10000")
    credit_near_limit_percent: Decimal = Decimal("80")
    credit_high_percent: Decimal = Decimal("95")


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """The runtime ledger configuration returned by ``get_active_config()``."""

    config_id: str
    version: int
    currency: str
    default_lot_selection: str = "fifo"
    rounding: RoundingDef = field(default_factory=RoundingDef)
    concurrency: ConcurrencyDef = field(default_factory=ConcurrencyDef)
    alerts: AlertThresholds = field(default_factory=AlertThresholds)
    karats: tuple[KaratDef, ...] = ()
    checksum: str = ""

    def purity_table(self) -> dict[str, Decimal]:
        return {k.karat_id: k.purity for k in self.karats}
