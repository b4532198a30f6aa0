"""Invoice Line model."""
from sqlalchemy import Column, BigInteger, Integer, Numeric, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import relationship
from billing.database import Base, BigIntId


class InvoiceLine(Base):
    """Invoice Line (one item on an invoice, priced at purchase time)."""

    __tablename__ = 'invoice_line'
    __table_args__ = (
        UniqueConstraint('invoice_id', 'item_id', name='uq_invoice_line_item'),
        CheckConstraint('quantity > 0', name='ck_invoice_line_quantity_positive'),
        CheckConstraint('price_at_purchase >= 0', name='ck_invoice_line_price_non_negative'),
    )

    id = Column(BigIntId, primary_key=True, autoincrement=True)
    invoice_id = Column(BigInteger, ForeignKey('invoice.id', ondelete='CASCADE'), nullable=False, index=True)
    item_id = Column(BigInteger, ForeignKey('item.id', ondelete='RESTRICT'), nullable=False)
    quantity = Column(Integer, nullable=False)
    price_at_purchase = Column(Numeric(10, 2), nullable=False)
    total_line_amount = Column(Numeric(12, 2), nullable=False)

    # Relationships
    invoice = relationship('Invoice', back_populates='lines')
    item = relationship('Item')

    def __repr__(self):
        return f"<InvoiceLine(id={self.id}, item_id={self.item_id}, quantity={self.quantity})>"
