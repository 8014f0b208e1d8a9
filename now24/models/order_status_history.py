"""Append-only order status history."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from now24.database import Base, BigIntPK


class OrderStatusHistory(Base):
    """One row per status change. Rows are never updated or deleted."""

    __tablename__ = 'order_status_history'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    previous_status = Column(String(30), nullable=True)
    new_status = Column(String(30), nullable=False)
    changed_by = Column(String(50), nullable=False, default='system')
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    order = relationship('Order', back_populates='history')

    def to_dict(self):
        return {
            'previous_status': self.previous_status,
            'new_status': self.new_status,
            'changed_by': self.changed_by,
            'note': self.note,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<OrderStatusHistory(order_id={self.order_id}, {self.previous_status} -> {self.new_status})>"
