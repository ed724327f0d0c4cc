"""
Enumerations for snapshot export/import.

This module contains the enums that tag records and scope snapshots:
- EntityKind: The fixed set of record types a snapshot can carry
- DataTypeSelector: The export/import scope narrowing which kinds are included
"""

from enum import Enum
from typing import Dict, List, Tuple


class EntityKind(str, Enum):
    """
    Domain record type.

    Every record in a snapshot belongs to exactly one kind. The kind decides
    which required-field rules apply and under which key the record is
    stored in the envelope ``data`` section (see ``data_key``).
    """

    PRODUCT = "product"
    CATEGORY = "category"
    SUPPLIER = "supplier"
    SALE = "sale"
    SALE_ITEM = "sale_item"
    CUSTOMER = "customer"
    EXPENSE = "expense"
    EXPENSE_CATEGORY = "expense_category"
    STOCK_MOVEMENT = "stock_movement"
    BULK_PRICING = "bulk_pricing"

    @property
    def data_key(self) -> str:
        """Key used for this kind in the envelope data section."""
        return _DATA_KEYS[self]

    @property
    def label(self) -> str:
        """Human-readable name, e.g. 'stock movement'."""
        return self.value.replace("_", " ")

    @classmethod
    def from_data_key(cls, key: str) -> "EntityKind":
        """
        Look up a kind by its envelope data key.

        Raises:
            ValueError: If key is not a known data key
        """
        for kind, data_key in _DATA_KEYS.items():
            if data_key == key:
                return kind
        raise ValueError(f"Unknown data section: {key}")


_DATA_KEYS: Dict[EntityKind, str] = {
    EntityKind.PRODUCT: "products",
    EntityKind.CATEGORY: "categories",
    EntityKind.SUPPLIER: "suppliers",
    EntityKind.SALE: "sales",
    EntityKind.SALE_ITEM: "saleItems",
    EntityKind.CUSTOMER: "customers",
    EntityKind.EXPENSE: "expenses",
    EntityKind.EXPENSE_CATEGORY: "expenseCategories",
    EntityKind.STOCK_MOVEMENT: "stockMovements",
    EntityKind.BULK_PRICING: "bulkPricing",
}

# Order of sections inside an exported envelope
ENVELOPE_KIND_ORDER: Tuple[EntityKind, ...] = (
    EntityKind.PRODUCT,
    EntityKind.CATEGORY,
    EntityKind.SUPPLIER,
    EntityKind.SALE,
    EntityKind.SALE_ITEM,
    EntityKind.CUSTOMER,
    EntityKind.EXPENSE,
    EntityKind.EXPENSE_CATEGORY,
    EntityKind.STOCK_MOVEMENT,
    EntityKind.BULK_PRICING,
)

# Order in which kinds are written on import (parents before children)
IMPORT_KIND_ORDER: Tuple[EntityKind, ...] = (
    EntityKind.CATEGORY,
    EntityKind.SUPPLIER,
    EntityKind.PRODUCT,
    EntityKind.BULK_PRICING,
    EntityKind.CUSTOMER,
    EntityKind.SALE,
    EntityKind.SALE_ITEM,
    EntityKind.EXPENSE_CATEGORY,
    EntityKind.EXPENSE,
    EntityKind.STOCK_MOVEMENT,
)


class DataTypeSelector(str, Enum):
    """
    Export/import scope.

    Values:
        PRODUCTS: Products with their categories, suppliers and bulk pricing
        SALES: Sales and their line items
        CUSTOMERS: Customers only
        EXPENSES: Expenses and expense categories
        STOCK_MOVEMENTS: Stock movements only
        BULK_PRICING: Bulk pricing tiers only
        COMPLETE: Every kind
    """

    PRODUCTS = "products"
    SALES = "sales"
    CUSTOMERS = "customers"
    EXPENSES = "expenses"
    STOCK_MOVEMENTS = "stock_movements"
    BULK_PRICING = "bulk_pricing"
    COMPLETE = "complete"

    @property
    def allowed_kinds(self) -> Tuple[EntityKind, ...]:
        """Kinds a snapshot of this scope carries, in envelope order."""
        allowed = _ALLOWED_KINDS[self]
        return tuple(kind for kind in ENVELOPE_KIND_ORDER if kind in allowed)

    @property
    def validation_rules(self) -> List[str]:
        """Rule names recorded in the integrity block for this scope."""
        return list(_VALIDATION_RULES[self])

    @property
    def label(self) -> str:
        """Human-readable scope name used in messages."""
        if self is DataTypeSelector.COMPLETE:
            return "All data"
        return self.value.replace("_", " ").capitalize()

    def allows(self, kind: EntityKind) -> bool:
        """True if records of ``kind`` belong in this scope."""
        return kind in _ALLOWED_KINDS[self]

    @classmethod
    def parse(cls, value: str) -> "DataTypeSelector":
        """
        Parse a selector name.

        Raises:
            ValueError: If value is not a selector, naming the valid choices
        """
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(selector.value for selector in cls)
            raise ValueError(f"Unknown data type '{value}'. Choose one of: {choices}") from None


_ALLOWED_KINDS: Dict[DataTypeSelector, frozenset] = {
    DataTypeSelector.PRODUCTS: frozenset(
        {
            EntityKind.PRODUCT,
            EntityKind.CATEGORY,
            EntityKind.SUPPLIER,
            EntityKind.BULK_PRICING,
        }
    ),
    DataTypeSelector.SALES: frozenset({EntityKind.SALE, EntityKind.SALE_ITEM}),
    DataTypeSelector.CUSTOMERS: frozenset({EntityKind.CUSTOMER}),
    DataTypeSelector.EXPENSES: frozenset({EntityKind.EXPENSE, EntityKind.EXPENSE_CATEGORY}),
    DataTypeSelector.STOCK_MOVEMENTS: frozenset({EntityKind.STOCK_MOVEMENT}),
    DataTypeSelector.BULK_PRICING: frozenset({EntityKind.BULK_PRICING}),
    DataTypeSelector.COMPLETE: frozenset(EntityKind),
}

_VALIDATION_RULES: Dict[DataTypeSelector, Tuple[str, ...]] = {
    DataTypeSelector.PRODUCTS: ("required_fields", "positive_prices", "valid_categories"),
    DataTypeSelector.SALES: (
        "required_fields",
        "positive_amounts",
        "valid_dates",
        "valid_references",
    ),
    DataTypeSelector.CUSTOMERS: ("required_fields", "valid_contact_info"),
    DataTypeSelector.EXPENSES: (
        "required_fields",
        "positive_amounts",
        "valid_dates",
        "valid_categories",
    ),
    DataTypeSelector.STOCK_MOVEMENTS: (
        "required_fields",
        "valid_movement_types",
        "valid_references",
    ),
    DataTypeSelector.BULK_PRICING: (
        "required_fields",
        "positive_prices",
        "valid_quantity_tiers",
    ),
    DataTypeSelector.COMPLETE: (
        "required_fields",
        "positive_amounts",
        "valid_dates",
        "valid_references",
    ),
}
