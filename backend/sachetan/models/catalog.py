from sqlalchemy import Boolean, Column, Integer, String, ForeignKey, Numeric, Text
from sqlalchemy.orm import relationship

from sachetan.db.base import Base


class TopCategory(Base):
    __tablename__ = "top_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(128), nullable=False, unique=True)
    position = Column(Integer, nullable=False, default=0)

    mid_categories = relationship("MidCategory", back_populates="top_category", order_by="MidCategory.position")


class MidCategory(Base):
    __tablename__ = "mid_categories"

    id = Column(Integer, primary_key=True, index=True)
    top_category_id = Column(Integer, ForeignKey("top_categories.id"), nullable=False)
    name = Column(String(128), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    top_category = relationship("TopCategory", back_populates="mid_categories")
    products = relationship("Product", back_populates="mid_category", order_by="Product.id")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    mid_category_id = Column(Integer, ForeignKey("mid_categories.id"), nullable=False)
    name = Column(String(256), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    old_price = Column(Numeric(12, 2), nullable=True)
    sizes = Column(String(256), nullable=True)  # comma separated
    colors = Column(String(256), nullable=True)  # comma separated
    description = Column(Text, nullable=True)
    featured_photo = Column(String(1024), nullable=True)  # absolute URL
    stock = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    mid_category = relationship("MidCategory", back_populates="products")
