"""Cart item model."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from now24.database import Base, BigIntPK, JSONType


class CartItem(Base):
    """Product line in a cart. Customizations: [{name, option, price_delta}]."""

    __tablename__ = 'cart_item'
    __table_args__ = (
        UniqueConstraint('cart_id', 'product_id', name='uq_cart_item_cart_product'),
        CheckConstraint('quantity >= 1', name='cart_item_quantity_positive'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    cart_id = Column(BigInteger, ForeignKey('cart.id'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    customizations = Column(JSONType, nullable=True)
    note = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    cart = relationship('Cart', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<CartItem(cart_id={self.cart_id}, product_id={self.product_id}, quantity={self.quantity})>"
