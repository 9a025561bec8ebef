"""
gold_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``LedgerConfig``.  YAML
    loading lives in ``gold_config.loader`` and is not called by services.

Architecture position:
    Configuration.  Sits above ``gold_kernel`` and below ``gold_services``.
    The kernel MUST NEVER import from ``gold_config``; services receive the
    values they need (currency, thresholds, purities) as arguments.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Deterministic: the same YAML always produces the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ConfigurationError`` -- schema or value validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``GOLD_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying ledger activity to the configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from gold_config.loader import compute_checksum, load_yaml_file, parse_ledger_config
from gold_config.schema import (
    AlertThresholds,
    ConcurrencyDef,
    KaratDef,
    LedgerConfig,
    RoundingDef,
)

_logger = logging.getLogger("gold_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "ledger.yaml"


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override YAML file.  Defaults to gold_config/defaults/ledger.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If validation fails.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_ledger_config(load_yaml_file(source))

    _logger.info(
        "GOLD_CONFIG_TRACE",
        extra={
            "trace_type": "GOLD_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "currency": config.currency,
            "karat_count": len(config.karats),
            "source": str(source),
        },
    )
    return config


__all__ = [
    "AlertThresholds",
    "ConcurrencyDef",
    "DEFAULT_CONFIG_PATH",
    "KaratDef",
    "LedgerConfig",
    "RoundingDef",
    "compute_checksum",
    "get_active_config",
]
