from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from mobifaktura.core.database import Base
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.ids import generate_uuid


class BudgetRequestStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class BudgetRequest(Base):
    __tablename__ = "budget_requests"
    __table_args__ = (
        CheckConstraint("requested_amount > 0", name="ck_budget_requests_amount_positive"),
        # At most one open request per user and company
        Index(
            "uq_budget_requests_pending_user_company",
            "user_id",
            "company_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    requested_amount = Column(Numeric(12, 2), nullable=False)
    current_balance_at_request = Column(Numeric(12, 2), nullable=False)
    justification = Column(Text, nullable=False)
    status = Column(
        Enum(BudgetRequestStatus, name="budget_request_status"),
        nullable=False,
        default=BudgetRequestStatus.pending,
        index=True,
    )
    rejection_reason = Column(Text, nullable=True)
    reviewed_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    user = relationship("User", foreign_keys=[user_id])
    reviewer = relationship("User", foreign_keys=[reviewed_by])
    company = relationship("Company")

    def __repr__(self):
        return f"<BudgetRequest(id='{self.id}', amount={self.requested_amount}, status='{self.status}')>"
