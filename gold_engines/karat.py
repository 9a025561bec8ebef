"""
gold_engines.karat -- Karat conversion arithmetic.

Responsibility:
    Convert a weight of gold at one purity into the weight of gold at
    another purity that holds the same fine gold, and describe the
    conversion as a frozen quote.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The purity table is passed
    in (from gold_config); the stateful KaratConversionService that moves
    lots lives in gold_services.karat_conversion_service.

Invariants enforced:
    - Fine gold is conserved: to_weight * purity(to) == from_weight *
      purity(from), up to storage precision (9 places).
    - rate == purity(from) / purity(to).

Failure modes:
    - InvalidConversionWeightError for a non-positive weight or identical
      source and target karats.
    - UnknownKaratError for a karat missing from the purity table.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from gold_engines.tracer import traced_engine
from gold_kernel.db.types import WEIGHT_DECIMAL_PLACES, quantize_storage, round_weight
from gold_kernel.exceptions import InvalidConversionWeightError, UnknownKaratError


@dataclass(frozen=True, slots=True)
class KaratQuote:
    """
    A karat conversion, before anything is moved.

    ``to_weight`` and ``fine_weight`` are at storage precision; use
    ``reported_to_weight`` for display.
    """

    from_karat: str
    to_karat: str
    from_weight: Decimal
    from_purity: Decimal
    to_purity: Decimal
    fine_weight: Decimal
    to_weight: Decimal
    rate: Decimal

    @property
    def reported_to_weight(self) -> Decimal:
        return round_weight(self.to_weight, WEIGHT_DECIMAL_PLACES)


class KaratCalculator:
    """Purity-table-backed conversion math."""

    def __init__(self, purities: Mapping[str, Decimal]):
        self._purities = dict(purities)

    def purity(self, karat_id: str) -> Decimal:
        try:
            return self._purities[karat_id]
        except KeyError:
            raise UnknownKaratError(karat_id) from None

    @property
    def karat_ids(self) -> tuple[str, ...]:
        return tuple(self._purities)

    @traced_engine("karat", "1.0", fingerprint_fields=("from_karat", "to_karat", "from_weight"))
    def quote(self, from_karat: str, to_karat: str, from_weight: Decimal) -> KaratQuote:
        """
        fine = from_weight * purity(from); to_weight = fine / purity(to).

        Raises:
            InvalidConversionWeightError: weight <= 0 or from == to.
            UnknownKaratError: either karat is not in the table.
        """
        if from_weight <= 0:
            raise InvalidConversionWeightError(from_weight)
        if from_karat == to_karat:
            raise InvalidConversionWeightError(
                from_weight, f"source and target karat are both {from_karat}"
            )
        from_purity = self.purity(from_karat)
        to_purity = self.purity(to_karat)

        fine = from_weight * from_purity
        return KaratQuote(
            from_karat=from_karat,
            to_karat=to_karat,
            from_weight=from_weight,
            from_purity=from_purity,
            to_purity=to_purity,
            fine_weight=quantize_storage(fine),
            to_weight=quantize_storage(fine / to_purity),
            rate=quantize_storage(from_purity / to_purity),
        )
