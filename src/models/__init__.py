"""
Database models package.

This package contains the SQLAlchemy ORM models for every entity kind a
snapshot can carry, plus the kind/scope enums.
"""

from .base import Base, BaseModel
from .enums import (
    DataTypeSelector,
    EntityKind,
    ENVELOPE_KIND_ORDER,
    IMPORT_KIND_ORDER,
)
from .category import Category
from .supplier import Supplier
from .product import Product
from .bulk_pricing import BulkPricingTier
from .customer import Customer
from .sale import Sale, SaleItem
from .expense import Expense, ExpenseCategory
from .stock_movement import StockMovement

# Model class backing each entity kind
MODEL_BY_KIND = {
    EntityKind.PRODUCT: Product,
    EntityKind.CATEGORY: Category,
    EntityKind.SUPPLIER: Supplier,
    EntityKind.SALE: Sale,
    EntityKind.SALE_ITEM: SaleItem,
    EntityKind.CUSTOMER: Customer,
    EntityKind.EXPENSE: Expense,
    EntityKind.EXPENSE_CATEGORY: ExpenseCategory,
    EntityKind.STOCK_MOVEMENT: StockMovement,
    EntityKind.BULK_PRICING: BulkPricingTier,
}

__all__ = [
    "Base",
    "BaseModel",
    "BulkPricingTier",
    "Category",
    "Customer",
    "DataTypeSelector",
    "EntityKind",
    "ENVELOPE_KIND_ORDER",
    "Expense",
    "ExpenseCategory",
    "IMPORT_KIND_ORDER",
    "MODEL_BY_KIND",
    "Product",
    "Sale",
    "SaleItem",
    "StockMovement",
    "Supplier",
]
