"""Read-only query layer."""

from gold_kernel.selectors.ownership_selector import OwnershipSelector, ReplayResult

__all__ = ["OwnershipSelector", "ReplayResult"]
