"""AppUser model - customers placing orders."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from now24.database import Base, BigIntPK


class AppUser(Base):
    """Customer account. Authentication lives outside this service."""

    __tablename__ = 'app_user'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(200), nullable=True)
    cpf = Column(String(14), nullable=True)
    phone = Column(String(20), nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    # Mercado Pago customer, created lazily with the first saved card
    gateway_customer_id = Column(String(100), nullable=True, unique=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    addresses = relationship('Address', back_populates='user')
    cards = relationship('PaymentCard', back_populates='user')

    @property
    def first_name(self):
        return (self.full_name or '').split(' ')[0]

    @property
    def last_name(self):
        return ' '.join((self.full_name or '').split(' ')[1:])

    def __repr__(self):
        return f"<AppUser(id={self.id}, email='{self.email}')>"
