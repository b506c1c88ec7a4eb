"""
SQLAlchemy ORM models for database tables.

This package defines the inventory schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class
    category: Part categories (master)
    location: Storage locations (master)
    tag: Tags (master) and the part_tags association table
    part: Inventory parts, owners of image / datasheet blobs
    storage_log: Append-only stock-in log

Usage:
    from models.part import Part
    from models.base import Base

Relationships:
    - Category → Part (one-to-many)
    - Location → Part (one-to-many)
    - Part ↔ Tag (many-to-many through part_tags)
    - Part → StorageLog (one-to-many)

Importing this package registers every table on Base.metadata.
"""

from models.base import Base
from models.category import Category
from models.location import Location
from models.tag import Tag, part_tags
from models.part import Part
from models.storage_log import StorageLog

__all__ = [
    "Base",
    "Category",
    "Location",
    "Tag",
    "part_tags",
    "Part",
    "StorageLog",
]
