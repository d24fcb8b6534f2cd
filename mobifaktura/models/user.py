from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, true
import enum

from mobifaktura.core.database import Base
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.ids import generate_uuid


class UserRole(str, enum.Enum):
    user = "user"
    accountant = "accountant"
    admin = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(Text, nullable=False)
    name = Column(String(255), nullable=False)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.user)

    # Cached running balance, always equal to the sum of saldo_transactions.amount
    saldo = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")

    notification_invoice_accepted = Column(Boolean, nullable=False, default=True, server_default=true())
    notification_invoice_rejected = Column(Boolean, nullable=False, default=True, server_default=true())
    notification_invoice_submitted = Column(Boolean, nullable=False, default=True, server_default=true())
    notification_invoice_re_review = Column(Boolean, nullable=False, default=True, server_default=true())
    notification_budget_request_submitted = Column(Boolean, nullable=False, default=True, server_default=true())
    notification_budget_request_approved = Column(Boolean, nullable=False, default=True, server_default=true())
    notification_budget_request_rejected = Column(Boolean, nullable=False, default=True, server_default=true())
    notification_saldo_adjusted = Column(Boolean, nullable=False, default=True, server_default=true())
    notification_password_changed = Column(Boolean, nullable=False, default=True, server_default=true())
    notification_system_message = Column(Boolean, nullable=False, default=True, server_default=true())

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    company_permissions = relationship(
        "UserCompanyPermission", back_populates="user", cascade="all, delete-orphan"
    )
    invoices = relationship(
        "Invoice", back_populates="user", foreign_keys="Invoice.user_id"
    )
    saldo_transactions = relationship(
        "SaldoTransaction", back_populates="user", foreign_keys="SaldoTransaction.user_id"
    )

    @property
    def is_staff(self) -> bool:
        """Accountants and admins see every company and review work."""
        return self.role in (UserRole.accountant, UserRole.admin)

    def __repr__(self):
        return f"<User(id='{self.id}', email='{self.email}', role='{self.role}')>"


class UserSession(Base):
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    user = relationship("User", back_populates="sessions")


class LoginLog(Base):
    """Audit row written for every login attempt, successful or not."""
    __tablename__ = "login_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, index=True)
    ip_address = Column(String(64), nullable=False)
    success = Column(Boolean, nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)


class LoginAttempt(Base):
    """Failed login counter per email, used for the temporary lockout."""
    __tablename__ = "login_attempts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    identifier = Column(String(255), nullable=False, unique=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)
