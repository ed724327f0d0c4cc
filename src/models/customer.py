"""
Customer model for shoppers with a purchase history.
"""

from sqlalchemy import Column, Float, Index, Integer, String, Text

from .base import BaseModel


class Customer(BaseModel):
    """
    Customer model.

    Attributes:
        name: Customer name
        phone: Optional phone number, also used for conflict matching on import
        email: Optional email address
        address: Optional address
        total_spent: Running total of purchases
        visit_count: Number of recorded visits
        notes: Optional notes
    """

    __tablename__ = "customers"

    name = Column(String(200), nullable=False)
    phone = Column(String(50), nullable=True)
    email = Column(String(200), nullable=True)
    address = Column(Text, nullable=True)
    total_spent = Column(Float, nullable=False, default=0.0)
    visit_count = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_customer_name", "name"),
        Index("idx_customer_phone", "phone"),
    )
