"""
Module: gold_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by
    gold_services: cost quotes (weighted average, FIFO, LIFO) and karat
    conversion arithmetic.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import gold_kernel.domain, gold_kernel.db.types and
    gold_kernel.exceptions.  MUST NOT import gold_services.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic; floats are never accepted.
    - Determinism: identical inputs always produce identical outputs.
"""

from gold_engines.costing import (
    CostAnalysis,
    CostingCalculator,
    CostMethod,
    CostQuote,
    CostSource,
    WeightedAverage,
)
from gold_engines.karat import KaratCalculator, KaratQuote
from gold_engines.tracer import traced_engine

__all__ = [
    "CostAnalysis",
    "CostingCalculator",
    "CostMethod",
    "CostQuote",
    "CostSource",
    "KaratCalculator",
    "KaratQuote",
    "WeightedAverage",
    "traced_engine",
]
