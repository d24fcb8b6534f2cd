from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    exists,
    text,
)
from sqlalchemy.orm import aliased, relationship
from sqlalchemy.sql import func
import enum

from mobifaktura.core.database import Base
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.ids import generate_uuid


class InvoiceType(str, enum.Enum):
    einvoice = "einvoice"
    receipt = "receipt"
    correction = "correction"


class InvoiceStatus(str, enum.Enum):
    pending = "pending"
    in_review = "in_review"
    accepted = "accepted"
    rejected = "rejected"
    re_review = "re_review"


# States an accountant may pick an invoice up from
CLAIMABLE_STATUSES = (InvoiceStatus.pending, InvoiceStatus.re_review)
REVIEWED_STATUSES = (InvoiceStatus.accepted, InvoiceStatus.rejected)


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint(
            "(invoice_type = 'correction' AND original_invoice_id IS NOT NULL AND correction_amount IS NOT NULL)"
            " OR (invoice_type <> 'correction' AND original_invoice_id IS NULL AND correction_amount IS NULL)",
            name="ck_invoices_correction_fields",
        ),
        CheckConstraint(
            "correction_amount IS NULL OR correction_amount > 0",
            name="ck_invoices_correction_amount_positive",
        ),
        # An invoice is corrected at most once
        Index(
            "uq_invoices_single_correction",
            "original_invoice_id",
            unique=True,
            postgresql_where=text("invoice_type = 'correction'"),
            sqlite_where=text("invoice_type = 'correction'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)

    invoice_type = Column(Enum(InvoiceType, name="invoice_type"), nullable=False, default=InvoiceType.einvoice)
    invoice_number = Column(String(100), nullable=False)
    ksef_number = Column(String(100), nullable=True, index=True)
    kwota = Column(Numeric(12, 2), nullable=True)
    description = Column(Text, nullable=True)
    justification = Column(Text, nullable=True)
    image_key = Column(String(500), nullable=True)

    status = Column(Enum(InvoiceStatus, name="invoice_status"), nullable=False, default=InvoiceStatus.pending, index=True)
    rejection_reason = Column(Text, nullable=True)
    reviewed_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)

    # Review lock, held by the accountant currently looking at the invoice
    current_reviewer = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_started_at = Column(DateTime(timezone=True), nullable=True)
    last_review_ping = Column(DateTime(timezone=True), nullable=True)

    last_edited_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_edited_at = Column(DateTime(timezone=True), nullable=True)

    # Correction rows only
    original_invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)
    correction_amount = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    user = relationship("User", back_populates="invoices", foreign_keys=[user_id])
    company = relationship("Company", back_populates="invoices")
    reviewer = relationship("User", foreign_keys=[reviewed_by])
    original_invoice = relationship("Invoice", remote_side=[id], backref="corrections")
    edit_history = relationship(
        "InvoiceEditHistory",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceEditHistory.edited_at",
    )

    @property
    def is_correction(self) -> bool:
        return self.invoice_type == InvoiceType.correction

    def __repr__(self):
        return f"<Invoice(id='{self.id}', number='{self.invoice_number}', status='{self.status}')>"


def correction_exists(original_id_column):
    """EXISTS clause matching a korekta issued against ``original_id_column``."""
    correction = aliased(Invoice)
    return exists().where(
        correction.original_invoice_id == original_id_column,
        correction.invoice_type == InvoiceType.correction,
    )


class InvoiceEditHistory(Base):
    __tablename__ = "invoice_edit_history"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    invoice_id = Column(String(36), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    edited_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    previous_invoice_number = Column(String(100), nullable=True)
    new_invoice_number = Column(String(100), nullable=True)
    previous_description = Column(Text, nullable=True)
    new_description = Column(Text, nullable=True)
    previous_kwota = Column(Numeric(12, 2), nullable=True)
    new_kwota = Column(Numeric(12, 2), nullable=True)
    edited_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    invoice = relationship("Invoice", back_populates="edit_history")
    editor = relationship("User")
