from sqlalchemy import Column, Integer, String, Text, Index, text
from models.base import Base


class Location(Base):
    """
    Physical storage location (box, drawer, shelf).

    qr_code is optional but unique when present; a location can be
    looked up by scanning the label stuck on it.
    """
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    qr_code = Column(String(255), nullable=True)
    display_order = Column(Integer, nullable=False, server_default=text("0"))

    __table_args__ = (
        Index("idx_locations_qr_code", "qr_code", unique=True),
    )
