"""Coupon model."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, CheckConstraint
from now24.database import Base, BigIntPK, enum_values
import enum


class DiscountType(str, enum.Enum):
    """Coupon discount kind."""
    FIXED = 'fixed'
    PERCENTAGE = 'percentage'


class Coupon(Base):
    """
    Discount coupon.

    `discount_value` is centavos for FIXED and a whole percent for PERCENTAGE.
    Per-user usage is counted from coupon_usage rows.
    """

    __tablename__ = 'coupon'
    __table_args__ = (
        CheckConstraint('discount_value >= 0', name='coupon_discount_value_non_negative'),
        CheckConstraint('used_count >= 0', name='coupon_used_count_non_negative'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True)
    description = Column(String(255), nullable=True)
    discount_type = Column(
        Enum(DiscountType, name='discount_type', values_callable=enum_values),
        nullable=False,
    )
    discount_value = Column(Integer, nullable=False)
    min_order_value = Column(Integer, nullable=False, default=0)
    max_discount = Column(Integer, nullable=True)
    applies_to_delivery = Column(Boolean, nullable=False, default=False)
    valid_from = Column(DateTime, nullable=False, default=datetime.utcnow)
    valid_until = Column(DateTime, nullable=True)
    usage_limit = Column(Integer, nullable=True)  # NULL = unlimited
    per_user_limit = Column(Integer, nullable=False, default=1)
    used_count = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def is_exhausted(self):
        return self.usage_limit is not None and (self.used_count or 0) >= self.usage_limit

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'description': self.description,
            'discount_type': self.discount_type.value,
            'discount_value': self.discount_value,
            'min_order_value': self.min_order_value,
            'max_discount': self.max_discount,
            'applies_to_delivery': self.applies_to_delivery,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
        }

    def __repr__(self):
        return f"<Coupon(code='{self.code}', type={self.discount_type}, value={self.discount_value})>"
