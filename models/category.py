from sqlalchemy import Column, Integer, String, text
from models.base import Base


class Category(Base):
    """Part category (master data)"""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    display_order = Column(Integer, nullable=False, server_default=text("0"))
