from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from mobifaktura.core.database import Base
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.ids import generate_uuid


class AdvanceStatus(str, enum.Enum):
    pending = "pending"
    transferred = "transferred"
    settled = "settled"


class Advance(Base):
    """Zaliczka: money paid out to an employee up front, credited to their saldo on transfer."""
    __tablename__ = "advances"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_advances_amount_positive"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(
        Enum(AdvanceStatus, name="advance_status"),
        nullable=False,
        default=AdvanceStatus.pending,
        index=True,
    )
    description = Column(Text, nullable=False)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    transfer_number = Column(String(255), nullable=True)
    transferred_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    transferred_at = Column(DateTime(timezone=True), nullable=True)
    settled_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    user = relationship("User", foreign_keys=[user_id])
    company = relationship("Company")
    creator = relationship("User", foreign_keys=[created_by])
    transferrer = relationship("User", foreign_keys=[transferred_by])
    settler = relationship("User", foreign_keys=[settled_by])

    def __repr__(self):
        return f"<Advance(id='{self.id}', amount={self.amount}, status='{self.status}')>"
