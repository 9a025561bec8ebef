"""Pure domain layer: clock, identity values and DTOs."""

from gold_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from gold_kernel.domain.values import ItemRef, LotIdentity

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ItemRef",
    "LotIdentity",
]
