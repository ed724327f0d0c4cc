"""
Category model for grouping products.

Example: "Beverages" grouping soft drinks, juices and water.
"""

from sqlalchemy import Column, String, Text, Index

from .base import BaseModel


class Category(BaseModel):
    """
    Product category.

    Attributes:
        name: Category name, used for name-based conflict matching on import
        description: Optional free-text description
    """

    __tablename__ = "categories"

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    __table_args__ = (Index("idx_category_name", "name"),)
