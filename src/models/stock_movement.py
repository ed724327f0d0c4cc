"""
Stock movement model recording inventory changes.

Example: a "purchase" movement of +24 units of a product from a supplier,
or a "sale" movement of -2 units.
"""

from sqlalchemy import Column, Float, Index, Integer, String, Text

from .base import BaseModel


class StockMovement(BaseModel):
    """
    Stock movement.

    Attributes:
        product_id: Product whose stock changed
        movement_type: e.g. "purchase", "sale", "adjustment", "return"
        quantity: Signed unit change
        supplier_id: Optional supplier for purchases
        unit_cost: Optional cost per unit
        reference_number: Optional external reference
        notes: Optional notes
        date: ISO-8601 timestamp of the movement
    """

    __tablename__ = "stock_movements"

    product_id = Column(String(36), nullable=False)
    movement_type = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False)
    supplier_id = Column(String(36), nullable=True)
    unit_cost = Column(Float, nullable=True)
    reference_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    date = Column(String(40), nullable=True)

    __table_args__ = (Index("idx_stock_movement_product", "product_id"),)
