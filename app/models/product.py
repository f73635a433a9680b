from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey, DateTime, Text, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
from app.db.base_class import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    slug = Column(String(250), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    brand = Column(String(100), nullable=True)

    # Pricing
    base_price = Column(Numeric(10, 2), nullable=False)
    sale_price = Column(Numeric(10, 2), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")

    @property
    def effective_price(self) -> Decimal:
        return Decimal(self.sale_price if self.sale_price is not None else self.base_price)


Index('idx_product_active', Product.is_active)


class ProductVariant(Base):
    """Size + Color per product, priced relative to the product"""
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    size = Column(String(10), nullable=False)  # XS, S, M, L, XL, 28, 30, etc.
    color = Column(String(50), nullable=True)
    sku = Column(String(100), unique=True, nullable=False, index=True)

    additional_price = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    product = relationship("Product", back_populates="variants")

    @property
    def unit_price(self) -> Decimal:
        return self.product.effective_price + Decimal(self.additional_price or 0)

    @property
    def details(self) -> str:
        details = f"Size: {self.size}"
        if self.color:
            details += f", Color: {self.color}"
        return details
