from sqlalchemy import Column, DateTime, Enum, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from mobifaktura.core.database import Base
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.ids import generate_uuid


class TransactionType(str, enum.Enum):
    adjustment = "adjustment"
    invoice_deduction = "invoice_deduction"
    invoice_refund = "invoice_refund"
    zasilenie = "zasilenie"
    invoice_delete_refund = "invoice_delete_refund"
    advance_credit = "advance_credit"


class SaldoTransaction(Base):
    """Append-only ledger entry. Never updated after insert."""
    __tablename__ = "saldo_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_before = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    transaction_type = Column(
        Enum(TransactionType, native_enum=False, length=50, name="transaction_type"),
        nullable=False,
    )
    # Invoice, correction, budget request or advance that caused the entry
    reference_id = Column(String(36), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)

    user = relationship("User", back_populates="saldo_transactions", foreign_keys=[user_id])
    creator = relationship("User", foreign_keys=[created_by])
