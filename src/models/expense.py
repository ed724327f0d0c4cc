"""
Expense and ExpenseCategory models.
"""

from sqlalchemy import Column, Float, ForeignKey, Index, String, Text

from .base import BaseModel


class ExpenseCategory(BaseModel):
    """
    Expense category (e.g., "Rent", "Utilities").

    Attributes:
        name: Category name
        description: Optional description
    """

    __tablename__ = "expense_categories"

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    __table_args__ = (Index("idx_expense_category_name", "name"),)


class Expense(BaseModel):
    """
    Business expense.

    Attributes:
        category_id: Optional expense category
        amount: Amount paid
        description: What the expense was for
        receipt_number: Optional receipt reference
        date: ISO-8601 date of the expense
    """

    __tablename__ = "expenses"

    category_id = Column(
        String(36), ForeignKey("expense_categories.id", ondelete="SET NULL"), nullable=True
    )
    amount = Column(Float, nullable=False)
    description = Column(Text, nullable=False)
    receipt_number = Column(String(100), nullable=True)
    date = Column(String(40), nullable=True)

    __table_args__ = (Index("idx_expense_category", "category_id"),)
