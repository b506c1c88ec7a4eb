from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, func
from models.base import Base


class StorageLog(Base):
    """
    Append-only log of stock-in events.

    Purpose:
    - Audit trail of where a part was put away and when
    - Cleared together with parts by a reset
    """
    __tablename__ = "storage_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    part_id = Column(Integer, ForeignKey("parts.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    memo = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
