"""Product model (catalog-owned; stock mutated only by the inventory service)."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, CheckConstraint
from now24.database import Base, BigIntPK, enum_values
import enum


class StockStatus(str, enum.Enum):
    """Catalog availability flag."""
    AVAILABLE = 'available'
    LOW_STOCK = 'low_stock'
    UNAVAILABLE = 'unavailable'
    DISCONTINUED = 'discontinued'


class Product(Base):
    """Sellable product. Prices are integer centavos."""

    __tablename__ = 'product'
    __table_args__ = (
        CheckConstraint('stock >= 0', name='product_stock_non_negative'),
        CheckConstraint('price >= 0', name='product_price_non_negative'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    price = Column(Integer, nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    sales = Column(Integer, nullable=False, default=0)
    stock_status = Column(
        Enum(StockStatus, name='stock_status', values_callable=enum_values),
        nullable=False,
        default=StockStatus.AVAILABLE,
    )
    image_url = Column(String(500), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_sellable(self):
        return self.stock_status in (StockStatus.AVAILABLE, StockStatus.LOW_STOCK)

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', stock={self.stock})>"
