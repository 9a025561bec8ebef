"""
Collaborator interfaces the ledger services consume, with in-memory
implementations.

Catalog, supplier master data and the karat purity table are owned by
other parts of the retail system.  The services here only read them, so
each is a ``typing.Protocol``; the dict-backed classes below are enough
for wiring a standalone ledger and for tests.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, Mapping, Protocol

from gold_config.schema import LedgerConfig
from gold_kernel.domain.values import ItemRef


@dataclass(frozen=True, slots=True)
class ItemInfo:
    item: ItemRef
    name: str
    unit: str = ""


@dataclass(frozen=True, slots=True)
class SupplierInfo:
    """
    Supplier master data relevant to credit.

    ``credit_limit`` None means no limit.  ``current_balance`` None means
    the registry does not track balances and the ledger's outstanding
    owed is used instead.
    """

    supplier_id: str
    name: str
    credit_limit: Decimal | None = None
    credit_limit_enforced: bool = False
    current_balance: Decimal | None = None
    is_active: bool = True


class Catalog(Protocol):
    def describe(self, item: ItemRef) -> ItemInfo | None:
        ...


class SupplierRegistry(Protocol):
    def get_supplier(self, supplier_id: str) -> SupplierInfo | None:
        ...

    def suppliers(self) -> Iterable[SupplierInfo]:
        ...


class PurityTable(Protocol):
    def purities(self) -> Mapping[str, Decimal]:
        ...


class InMemoryCatalog:
    def __init__(self, items: Iterable[ItemInfo] = ()):
        self._items = {info.item: info for info in items}

    def add(self, info: ItemInfo) -> None:
        self._items[info.item] = info

    def describe(self, item: ItemRef) -> ItemInfo | None:
        return self._items.get(item)


class InMemorySupplierRegistry:
    def __init__(self, suppliers: Iterable[SupplierInfo] = ()):
        self._suppliers = {s.supplier_id: s for s in suppliers}

    def add(self, supplier: SupplierInfo) -> None:
        self._suppliers[supplier.supplier_id] = supplier

    def set_balance(self, supplier_id: str, balance: Decimal | None) -> None:
        self._suppliers[supplier_id] = replace(self._suppliers[supplier_id], current_balance=balance)

    def deactivate(self, supplier_id: str) -> None:
        self._suppliers[supplier_id] = replace(self._suppliers[supplier_id], is_active=False)

    def get_supplier(self, supplier_id: str) -> SupplierInfo | None:
        return self._suppliers.get(supplier_id)

    def suppliers(self) -> list[SupplierInfo]:
        return list(self._suppliers.values())


class ConfigPurityTable:
    """Purity table read from the active LedgerConfig."""

    def __init__(self, config: LedgerConfig):
        self._purities = config.purity_table()

    def purities(self) -> dict[str, Decimal]:
        return dict(self._purities)


class StaticPurityTable:
    def __init__(self, purities: Mapping[str, Decimal | str]):
        self._purities = {k: Decimal(str(v)) for k, v in purities.items()}

    def purities(self) -> dict[str, Decimal]:
        return dict(self._purities)
