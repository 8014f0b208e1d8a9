"""Order item snapshot."""
from sqlalchemy import Column, BigInteger, Integer, String, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from now24.database import Base, BigIntPK, JSONType


class OrderItem(Base):
    """Price and name captured at order time; never recomputed."""

    __tablename__ = 'order_item'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='order_item_quantity_positive'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    product_id = Column(BigInteger, ForeignKey('product.id'), nullable=False)
    product_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)
    line_total = Column(Integer, nullable=False)
    customizations = Column(JSONType, nullable=True)
    note = Column(String(500), nullable=True)

    order = relationship('Order', back_populates='items')

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'line_total': self.line_total,
            'customizations': self.customizations or [],
            'note': self.note,
        }

    def __repr__(self):
        return f"<OrderItem(order_id={self.order_id}, product_id={self.product_id}, quantity={self.quantity})>"
