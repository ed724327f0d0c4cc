"""
Supplier model for tracking product vendors.

Example: "Metro Wholesale" with a contact person and phone number.
"""

from sqlalchemy import Column, String, Text, Index

from .base import BaseModel


class Supplier(BaseModel):
    """
    Supplier model representing vendors products are bought from.

    Attributes:
        name: Supplier name (e.g., "Metro Wholesale")
        contact_name: Optional contact person
        phone: Optional phone number
        email: Optional email address
        address: Optional postal address
        notes: Optional notes
    """

    __tablename__ = "suppliers"

    name = Column(String(200), nullable=False)
    contact_name = Column(String(200), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(200), nullable=True)
    address = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (Index("idx_supplier_name", "name"),)
