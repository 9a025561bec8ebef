"""
Values -- Immutable identity value objects for the ownership ledger.

Responsibility:
    ItemRef names what is owned (a finished product, or raw gold of one
    karat); LotIdentity names whose it is and where (branch, supplier).
    Both render the canonical string keys used for uniqueness and locking.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Item kind is one of raw_gold / product; ids are non-empty.
    - Keys never contain the separator characters used to join them.

Failure modes:
    - ValueError on construction with empty or malformed ids.
"""

from __future__ import annotations

from dataclasses import dataclass

from gold_kernel.models.ownership_lot import ItemKind, UnitBasis

_SEPARATORS = ("|", "#")
MERCHANT_SUPPLIER_KEY = "-"


def _check_id(label: str, value: str) -> None:
    if not value or not value.strip():
        raise ValueError(f"{label} must be non-empty")
    if any(sep in value for sep in _SEPARATORS):
        raise ValueError(f"{label} may not contain {_SEPARATORS}: {value!r}")


@dataclass(frozen=True, slots=True)
class ItemRef:
    """
    Reference to an owned item.

    Contract:
        ``ItemRef.raw_gold("21K")`` for raw gold of a karat,
        ``ItemRef.product("RING-001")`` for a catalog product.

    Guarantees:
        - Immutable and hashable.
        - ``key`` round-trips through ``ItemRef.parse``.
    """

    kind: str
    item_id: str

    def __post_init__(self) -> None:
        if self.kind not in (ItemKind.RAW_GOLD, ItemKind.PRODUCT):
            raise ValueError(f"Unknown item kind: {self.kind!r}")
        _check_id("item_id", self.item_id)
        if ":" in self.item_id:
            raise ValueError(f"item_id may not contain ':': {self.item_id!r}")

    @classmethod
    def raw_gold(cls, karat_id: str) -> ItemRef:
        return cls(kind=ItemKind.RAW_GOLD, item_id=karat_id)

    @classmethod
    def product(cls, product_id: str) -> ItemRef:
        return cls(kind=ItemKind.PRODUCT, item_id=product_id)

    @classmethod
    def parse(cls, key: str) -> ItemRef:
        kind, _, item_id = key.partition(":")
        return cls(kind=kind, item_id=item_id)

    @property
    def is_raw_gold(self) -> bool:
        return self.kind == ItemKind.RAW_GOLD

    @property
    def default_unit_basis(self) -> str:
        """Raw gold is costed per gram, products per unit."""
        return UnitBasis.GRAM if self.is_raw_gold else UnitBasis.UNIT

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.item_id}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True, slots=True)
class LotIdentity:
    """
    (item, branch, supplier) -- the identity every lot lock is taken on.

    ``supplier_id`` is None for merchant-owned stock.
    """

    item: ItemRef
    branch_id: str
    supplier_id: str | None = None

    def __post_init__(self) -> None:
        _check_id("branch_id", self.branch_id)
        if self.supplier_id is not None:
            _check_id("supplier_id", self.supplier_id)
            if self.supplier_id == MERCHANT_SUPPLIER_KEY:
                raise ValueError(f"supplier_id {MERCHANT_SUPPLIER_KEY!r} is reserved for merchant stock")

    @property
    def is_merchant_owned(self) -> bool:
        return self.supplier_id is None

    @property
    def group_key(self) -> str:
        supplier = self.supplier_id if self.supplier_id is not None else MERCHANT_SUPPLIER_KEY
        return f"{self.item.key}|{self.branch_id}|{supplier}"

    def identity_key(self, lot_key: str = "") -> str:
        if "#" in lot_key:
            raise ValueError(f"lot_key may not contain '#': {lot_key!r}")
        return f"{self.group_key}#{lot_key}"


def supplier_lock_key(supplier_id: str) -> str:
    """
    Lock key covering a supplier's whole credit balance.

    Distinct from every lot group key, which always starts with an item kind.
    """
    _check_id("supplier_id", supplier_id)
    return f"supplier:{supplier_id}"
