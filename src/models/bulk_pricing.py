"""
Bulk pricing tier model.

A tier lowers the unit price of a product once a sale line reaches
``min_quantity`` units. Tiers are exported with the products scope and on
their own (bulk_pricing scope), so the product reference is not enforced
by a foreign key.
"""

from sqlalchemy import Column, Float, Index, Integer, String

from .base import BaseModel


class BulkPricingTier(BaseModel):
    """
    Bulk pricing tier.

    Attributes:
        product_id: Product the tier applies to
        min_quantity: Smallest line quantity the tier applies at
        bulk_price: Unit price once the tier applies
    """

    __tablename__ = "bulk_pricing"

    product_id = Column(String(36), nullable=False)
    min_quantity = Column(Integer, nullable=False)
    bulk_price = Column(Float, nullable=False)

    __table_args__ = (Index("idx_bulk_pricing_product", "product_id"),)
