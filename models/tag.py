from sqlalchemy import Column, Integer, String, ForeignKey, Table, text
from models.base import Base


class Tag(Base):
    """Free-form label attached to parts (master data)"""
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False, unique=True)
    display_order = Column(Integer, nullable=False, server_default=text("0"))


# Association table; composite key, no surrogate id
part_tags = Table(
    "part_tags",
    Base.metadata,
    Column("part_id", Integer, ForeignKey("parts.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)
