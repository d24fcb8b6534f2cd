from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func, true

from mobifaktura.core.database import Base
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.ids import generate_uuid


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    nip = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    permissions = relationship("UserCompanyPermission", back_populates="company", cascade="all, delete-orphan")
    invoices = relationship("Invoice", back_populates="company")

    def __repr__(self):
        return f"<Company(id='{self.id}', name='{self.name}')>"


class UserCompanyPermission(Base):
    __tablename__ = "user_company_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "company_id", name="uq_user_company_permission"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    user = relationship("User", back_populates="company_permissions")
    company = relationship("Company", back_populates="permissions")
