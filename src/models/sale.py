"""
Sale and SaleItem models.

A Sale is one checkout; each SaleItem is one line of it. Sale dates are kept
as the ISO-8601 text the point of sale recorded.
"""

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import BaseModel


class Sale(BaseModel):
    """
    Sale model.

    Attributes:
        total: Amount charged
        payment_method: e.g. "cash", "card"
        customer_id: Optional customer reference (not enforced, customers
            are exported under a separate scope)
        discount: Discount applied to the whole sale
        note: Optional note
        date: ISO-8601 timestamp of the sale

    Relationships:
        items: Line items, deleted with the sale
    """

    __tablename__ = "sales"

    total = Column(Float, nullable=False)
    payment_method = Column(String(50), nullable=False)
    customer_id = Column(String(36), nullable=True)
    discount = Column(Float, nullable=False, default=0.0)
    note = Column(Text, nullable=True)
    date = Column(String(40), nullable=True)

    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_sale_customer", "customer_id"),
        Index("idx_sale_date", "date"),
    )


class SaleItem(BaseModel):
    """
    Sale line item.

    Attributes:
        sale_id: Owning sale
        product_id: Product sold (not enforced, products may be in another scope)
        quantity: Units sold
        price: Unit price charged
        cost: Optional unit cost at time of sale
        discount: Line discount
    """

    __tablename__ = "sale_items"

    sale_id = Column(String(36), ForeignKey("sales.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(String(36), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    cost = Column(Float, nullable=True)
    discount = Column(Float, nullable=False, default=0.0)

    sale = relationship("Sale", back_populates="items")

    __table_args__ = (
        Index("idx_sale_item_sale", "sale_id"),
        Index("idx_sale_item_product", "product_id"),
    )
