from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, false
import enum

from mobifaktura.core.database import Base
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.ids import generate_uuid


class NotificationType(str, enum.Enum):
    invoice_accepted = "invoice_accepted"
    invoice_rejected = "invoice_rejected"
    invoice_submitted = "invoice_submitted"
    invoice_re_review = "invoice_re_review"
    budget_request_submitted = "budget_request_submitted"
    budget_request_approved = "budget_request_approved"
    budget_request_rejected = "budget_request_rejected"
    saldo_adjusted = "saldo_adjusted"
    password_changed = "password_changed"
    system_message = "system_message"


# User preference column gating each notification type
PREFERENCE_COLUMNS = {
    NotificationType.invoice_accepted: "notification_invoice_accepted",
    NotificationType.invoice_rejected: "notification_invoice_rejected",
    NotificationType.invoice_submitted: "notification_invoice_submitted",
    NotificationType.invoice_re_review: "notification_invoice_re_review",
    NotificationType.budget_request_submitted: "notification_budget_request_submitted",
    NotificationType.budget_request_approved: "notification_budget_request_approved",
    NotificationType.budget_request_rejected: "notification_budget_request_rejected",
    NotificationType.saldo_adjusted: "notification_saldo_adjusted",
    NotificationType.password_changed: "notification_password_changed",
    NotificationType.system_message: "notification_system_message",
}


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(NotificationType, name="notification_type"), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False, server_default=false())
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User")
