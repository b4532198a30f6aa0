"""Item model."""
from sqlalchemy import Column, BigInteger, String, Text, Integer, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from billing.database import Base, BigIntId


class Item(Base):
    """Inventory item owned by a tenant."""

    __tablename__ = 'item'
    __table_args__ = (
        CheckConstraint('price >= 0', name='ck_item_price_non_negative'),
        # Backstop for the stock ledger's conditional update
        CheckConstraint('stock_quantity >= 0', name='ck_item_stock_non_negative'),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    tenant_id = Column(BigInteger, ForeignKey('company.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0, server_default='0')
    category = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    tenant = relationship('Tenant')

    def __repr__(self):
        return f"<Item(id={self.id}, name='{self.name}', stock={self.stock_quantity})>"
