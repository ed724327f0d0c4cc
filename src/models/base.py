"""
Base model class for all database models.

Provides common functionality and fields for all models:
- Primary key (UUID v4 string, the id used in snapshot files)
- Timestamp fields (created_at, updated_at), store bookkeeping only
- Utility methods (to_dict, to_record, update_from_dict)
- SQLAlchemy declarative base
"""

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_base

from src.utils.datetime_utils import utc_now
from src.utils.uuid_utils import new_id

# Create the declarative base for all models
Base = declarative_base()

# Columns maintained by the store itself, never exported or imported
BOOKKEEPING_COLUMNS = ("created_at", "updated_at")


class BaseModel(Base):
    """
    Abstract base model with common fields and methods.

    All models inherit from this class to get:
    - id: UUID primary key (stored as string for SQLite compatibility)
    - created_at: Timestamp when record was created
    - updated_at: Timestamp when record was last modified
    - to_dict(): Convert model to dictionary
    - to_record(): Convert model to a snapshot record
    """

    __abstract__ = True

    id = Column(String(36), primary_key=True, default=new_id)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model instance to dictionary.

        Returns:
            Dictionary of every column value, datetimes as ISO strings
        """
        result = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            result[column.name] = value
        return result

    def to_record(self) -> Dict[str, Any]:
        """Snapshot record: every column except store bookkeeping."""
        result = self.to_dict()
        for name in BOOKKEEPING_COLUMNS:
            result.pop(name, None)
        return result

    @classmethod
    def record_columns(cls) -> List[str]:
        """Column names a snapshot record may set."""
        return [
            column.name
            for column in cls.__table__.columns
            if column.name not in BOOKKEEPING_COLUMNS
        ]

    def update_from_dict(self, data: Dict[str, Any]) -> None:
        """
        Update model instance from dictionary.

        Only updates fields that exist in the model and are in the dictionary.

        Args:
            data: Dictionary with field names and values
        """
        for name in self.record_columns():
            if name in data and name != "id":
                setattr(self, name, data[name])

        self.updated_at = utc_now()

    def __repr__(self) -> str:
        """String like "ClassName(id=..., name='...')"."""
        class_name = self.__class__.__name__
        attrs = []

        if getattr(self, "id", None) is not None:
            attrs.append(f"id={self.id}")

        if getattr(self, "name", None) is not None:
            attrs.append(f"name='{self.name}'")

        return f"{class_name}({', '.join(attrs)})"
