from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, func, text
from sqlalchemy.orm import relationship
from models.base import Base
from models.tag import part_tags


class Part(Base):
    """
    An inventory item.

    Design:
    - image_path / datasheet_path hold blob references ("uploads/<key>")
      into the active blob store; the blob is owned implicitly by the row
    - datasheet_url is an external link and never touches the blob store
    - quantity and timestamps use server-side defaults so rows inserted
      through Core (restore) get the same defaults as ORM inserts
    """
    __tablename__ = "parts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)

    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True, index=True)

    quantity = Column(Integer, nullable=False, server_default=text("0"))

    # Blob references
    image_path = Column(String(1024), nullable=True)
    datasheet_url = Column(String(2048), nullable=True)
    datasheet_path = Column(String(1024), nullable=True)

    qr_code = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    # Relationships
    category = relationship("Category")
    location = relationship("Location")
    tags = relationship("Tag", secondary=part_tags)

    __table_args__ = (
        Index("idx_parts_qr_code", "qr_code", unique=True),
    )

    @property
    def blob_paths(self):
        """Blob references held by this row"""
        return [p for p in (self.image_path, self.datasheet_path) if p]
