"""
Product model for items sold at the point of sale.

Each product optionally belongs to a category and a preferred supplier, and
may carry bulk pricing tiers (see BulkPricingTier).
"""

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, String, Text

from .base import BaseModel


class Product(BaseModel):
    """
    Product model.

    Attributes:
        name: Product name (e.g., "Cola 330ml")
        barcode: Optional barcode, also used for conflict matching on import
        description: Optional description
        category_id: Optional category reference
        supplier_id: Optional preferred supplier reference
        price: Selling price
        cost: Purchase cost
        quantity: Units currently in stock
        min_stock: Low-stock warning threshold
        unit: Optional selling unit (e.g., "bottle")
    """

    __tablename__ = "products"

    name = Column(String(200), nullable=False)
    barcode = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)

    category_id = Column(
        String(36), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    supplier_id = Column(
        String(36), ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True
    )

    price = Column(Float, nullable=False, default=0.0)
    cost = Column(Float, nullable=False, default=0.0)
    quantity = Column(Integer, nullable=False, default=0)
    min_stock = Column(Integer, nullable=False, default=10)
    unit = Column(String(20), nullable=True)

    __table_args__ = (
        Index("idx_product_name", "name"),
        Index("idx_product_barcode", "barcode"),
        Index("idx_product_category", "category_id"),
    )
