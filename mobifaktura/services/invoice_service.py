from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from mobifaktura.core.config import settings
from mobifaktura.core.exceptions import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from mobifaktura.core.permissions import Capability, ensure_company_access, has_capability
from mobifaktura.logger_config import logger
from mobifaktura.models.company import Company
from mobifaktura.models.invoice import (
    CLAIMABLE_STATUSES,
    REVIEWED_STATUSES,
    Invoice,
    InvoiceEditHistory,
    InvoiceStatus,
    InvoiceType,
    correction_exists,
)
from mobifaktura.models.notification import NotificationType
from mobifaktura.models.saldo_transaction import TransactionType
from mobifaktura.models.user import User
from mobifaktura.services.ledger_service import LedgerService
from mobifaktura.services.notification_service import create_notification, notify_many, staff_user_ids
from mobifaktura.services.transitions import compare_and_swap_status, reload
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.duplicate_detection import group_duplicates
from mobifaktura.utils.money import format_pln, to_money

JUSTIFICATION_MIN = 10
INVOICE_NUMBER_MAX = 100

# Columns cleared whenever the review lock is dropped
_RELEASED_LOCK = {
    "current_reviewer": None,
    "review_started_at": None,
    "last_review_ping": None,
}


def is_charged(invoice: Invoice) -> bool:
    """Whether the submitter's saldo currently carries this invoice's deduction."""
    return (
        invoice.status == InvoiceStatus.accepted
        and invoice.invoice_type != InvoiceType.correction
        and invoice.kwota is not None
        and to_money(invoice.kwota) > 0
    )


class InvoiceService:
    """
    Invoice review workflow.

    pending -> in_review -> accepted | rejected -> re_review -> in_review ...

    Every transition is a compare-and-swap on status. Acceptance debits
    the submitter's saldo in the same transaction; leaving ``accepted``
    again (re-review, admin delete) credits it back.
    """
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)

    # ================= SUBMIT ===================

    def submit(
        self,
        user: User,
        company_id: str,
        invoice_number: str,
        justification: str,
        invoice_type: InvoiceType = InvoiceType.einvoice,
        kwota=None,
        ksef_number: Optional[str] = None,
        description: Optional[str] = None,
        image_key: Optional[str] = None,
    ) -> Invoice:
        if invoice_type == InvoiceType.correction:
            raise ValidationError("Corrections are created from the original invoice")

        invoice_number = (invoice_number or "").strip()
        if not invoice_number:
            raise ValidationError("Invoice number is required")
        if len(invoice_number) > INVOICE_NUMBER_MAX:
            raise ValidationError(f"Invoice number cannot exceed {INVOICE_NUMBER_MAX} characters")

        justification = (justification or "").strip()
        if len(justification) < JUSTIFICATION_MIN:
            raise ValidationError(f"Justification must be at least {JUSTIFICATION_MIN} characters")

        if kwota is not None:
            kwota = to_money(kwota)
            if kwota <= 0:
                raise ValidationError("Amount must be greater than zero")

        ksef_number = (ksef_number or "").strip() or None
        if invoice_type == InvoiceType.receipt and ksef_number:
            raise ValidationError("Receipts cannot have a KSeF number")

        company = self.db.query(Company).filter(Company.id == company_id).first()
        if not company:
            raise NotFoundError("Company not found")
        if not company.active:
            raise ValidationError("Company is inactive")
        ensure_company_access(self.db, user, company_id)

        invoice = Invoice(
            user_id=user.id,
            company_id=company_id,
            invoice_type=invoice_type,
            invoice_number=invoice_number,
            ksef_number=ksef_number,
            kwota=kwota,
            description=description,
            justification=justification,
            image_key=image_key,
            status=InvoiceStatus.pending,
        )
        self.db.add(invoice)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Error creating invoice")
            raise
        self.db.refresh(invoice)

        logger.info(f"Invoice {invoice.id} ({invoice_number}) submitted by {user.id}")
        notify_many(
            self.db,
            staff_user_ids(self.db, exclude=user.id),
            NotificationType.invoice_submitted,
            "New invoice",
            f"{user.name} submitted invoice {invoice_number} for {company.name}",
            invoice_id=invoice.id,
            company_id=company_id,
        )
        return invoice

    # ================= READ ===================

    def _base_query(self):
        return self.db.query(Invoice).options(
            joinedload(Invoice.user),
            joinedload(Invoice.company),
        )

    def _page(self, query, cursor: int, limit: int) -> Tuple[List[Invoice], Optional[int]]:
        rows = query.offset(cursor).limit(limit + 1).all()
        next_cursor = cursor + limit if len(rows) > limit else None
        return rows[:limit], next_cursor

    def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = self.db.query(Invoice).filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        return invoice

    def get_by_id(self, viewer: User, invoice_id: str) -> Invoice:
        invoice = self._base_query().filter(Invoice.id == invoice_id).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        if invoice.user_id != viewer.id and not has_capability(viewer, Capability.review_invoice):
            raise ForbiddenError("You don't have access to this invoice")
        return invoice

    def my_invoices(
        self,
        user: User,
        status: Optional[InvoiceStatus] = None,
        company_id: Optional[str] = None,
        cursor: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Invoice], Optional[int]]:
        query = self._base_query().filter(Invoice.user_id == user.id)
        if status:
            query = query.filter(Invoice.status == status)
        if company_id:
            query = query.filter(Invoice.company_id == company_id)
        query = query.order_by(Invoice.created_at.desc(), Invoice.id.asc())
        return self._page(query, cursor, limit)

    def pending_invoices(
        self,
        company_id: Optional[str] = None,
        search: Optional[str] = None,
        cursor: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Invoice], Optional[int]]:
        """Work queue for accountants: waiting, re-review and currently locked invoices."""
        self.release_stale_reviews()

        query = self._base_query().filter(
            Invoice.status.in_([InvoiceStatus.pending, InvoiceStatus.re_review, InvoiceStatus.in_review])
        )
        if company_id:
            query = query.filter(Invoice.company_id == company_id)
        if search:
            search_term = f"%{search}%"
            query = query.filter(
                or_(Invoice.invoice_number.ilike(search_term), Invoice.ksef_number.ilike(search_term))
            )
        query = query.order_by(Invoice.created_at.asc(), Invoice.id.asc())
        return self._page(query, cursor, limit)

    def reviewed_invoices(
        self,
        status: Optional[InvoiceStatus] = None,
        company_id: Optional[str] = None,
        reviewer_id: Optional[str] = None,
        cursor: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Invoice], Optional[int]]:
        query = self._base_query().filter(Invoice.status.in_(REVIEWED_STATUSES))
        if status:
            if status not in REVIEWED_STATUSES:
                raise ValidationError("Status must be accepted or rejected")
            query = query.filter(Invoice.status == status)
        if company_id:
            query = query.filter(Invoice.company_id == company_id)
        if reviewer_id:
            query = query.filter(Invoice.reviewed_by == reviewer_id)
        query = query.order_by(Invoice.reviewed_at.desc(), Invoice.id.asc())
        return self._page(query, cursor, limit)

    def find_duplicates(self, company_id: Optional[str] = None) -> List[List[Invoice]]:
        """Groups of invoices sharing amount, KSeF number and company."""
        query = self._base_query().filter(
            Invoice.kwota.isnot(None),
            Invoice.ksef_number.isnot(None),
            Invoice.invoice_type != InvoiceType.correction,
        )
        if company_id:
            query = query.filter(Invoice.company_id == company_id)
        invoices = query.order_by(Invoice.created_at.asc(), Invoice.id.asc()).all()
        return group_duplicates(invoices)

    # ================= REVIEW LOCK ===================

    def claim(self, invoice_id: str, reviewer: User) -> Invoice:
        """Take the review lock. The loser of a concurrent claim gets ConflictError."""
        invoice = self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.in_review and invoice.current_reviewer == reviewer.id:
            return self.heartbeat(invoice_id, reviewer)

        now = utcnow()
        swapped = compare_and_swap_status(
            self.db,
            Invoice,
            invoice_id,
            CLAIMABLE_STATUSES,
            {
                "status": InvoiceStatus.in_review,
                "current_reviewer": reviewer.id,
                "review_started_at": now,
                "last_review_ping": now,
                "updated_at": now,
            },
        )
        if not swapped:
            self.db.rollback()
            current = reload(self.db, Invoice, invoice_id)
            if current and current.status == InvoiceStatus.in_review:
                holder = self.db.query(User.name).filter(User.id == current.current_reviewer).scalar()
                raise ConflictError(f"Invoice is already being reviewed by {holder or 'another accountant'}")
            raise ConflictError("Invoice cannot be reviewed in its current state")

        self.db.commit()
        logger.info(f"Invoice {invoice_id} claimed by {reviewer.id}")
        return reload(self.db, Invoice, invoice_id)

    def heartbeat(self, invoice_id: str, reviewer: User) -> Invoice:
        swapped = compare_and_swap_status(
            self.db,
            Invoice,
            invoice_id,
            [InvoiceStatus.in_review],
            {"last_review_ping": utcnow()},
            Invoice.current_reviewer == reviewer.id,
        )
        if not swapped:
            self.db.rollback()
            self.get_invoice(invoice_id)
            raise ConflictError("You are no longer reviewing this invoice")
        self.db.commit()
        return reload(self.db, Invoice, invoice_id)

    def release(self, invoice_id: str, reviewer: User) -> Invoice:
        """Give the lock back without deciding."""
        swapped = compare_and_swap_status(
            self.db,
            Invoice,
            invoice_id,
            [InvoiceStatus.in_review],
            {"status": InvoiceStatus.pending, "updated_at": utcnow(), **_RELEASED_LOCK},
            Invoice.current_reviewer == reviewer.id,
        )
        if not swapped:
            self.db.rollback()
            self.get_invoice(invoice_id)
            raise ConflictError("You are not reviewing this invoice")
        self.db.commit()
        logger.info(f"Invoice {invoice_id} released by {reviewer.id}")
        return reload(self.db, Invoice, invoice_id)

    def release_stale_reviews(self, timeout_seconds: Optional[int] = None) -> int:
        """Return in_review invoices whose reviewer stopped pinging to pending."""
        timeout = timeout_seconds if timeout_seconds is not None else settings.REVIEW_STALE_SECONDS
        cutoff = utcnow() - timedelta(seconds=timeout)
        released = (
            self.db.query(Invoice)
            .filter(
                Invoice.status == InvoiceStatus.in_review,
                or_(Invoice.last_review_ping.is_(None), Invoice.last_review_ping < cutoff),
            )
            .update(
                {"status": InvoiceStatus.pending, "updated_at": utcnow(), **_RELEASED_LOCK},
                synchronize_session=False,
            )
        )
        self.db.commit()
        if released:
            logger.info(f"Released {released} stale invoice reviews")
        return released

    # ================= EDIT ===================

    def update_data(
        self,
        invoice_id: str,
        reviewer: User,
        invoice_number: Optional[str] = None,
        description: Optional[str] = None,
        kwota=None,
    ) -> Invoice:
        """Reviewer fixes OCR mistakes while holding the lock. Each change is journaled."""
        invoice = self.get_invoice(invoice_id)
        if invoice.status != InvoiceStatus.in_review or invoice.current_reviewer != reviewer.id:
            raise ConflictError("You can only edit an invoice you are reviewing")

        entry = InvoiceEditHistory(invoice_id=invoice.id, edited_by=reviewer.id)
        changed = False

        if invoice_number is not None:
            invoice_number = invoice_number.strip()
            if not invoice_number:
                raise ValidationError("Invoice number is required")
            if invoice_number != invoice.invoice_number:
                entry.previous_invoice_number = invoice.invoice_number
                entry.new_invoice_number = invoice_number
                invoice.invoice_number = invoice_number
                changed = True

        if description is not None and description != invoice.description:
            entry.previous_description = invoice.description
            entry.new_description = description
            invoice.description = description
            changed = True

        if kwota is not None:
            kwota = to_money(kwota)
            if kwota <= 0:
                raise ValidationError("Amount must be greater than zero")
            if invoice.kwota is None or to_money(invoice.kwota) != kwota:
                entry.previous_kwota = invoice.kwota
                entry.new_kwota = kwota
                invoice.kwota = kwota
                changed = True

        if not changed:
            return invoice

        now = utcnow()
        invoice.last_edited_by = reviewer.id
        invoice.last_edited_at = now
        invoice.last_review_ping = now
        self.db.add(entry)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Error updating invoice {invoice_id}")
            raise
        self.db.refresh(invoice)
        logger.info(f"Invoice {invoice_id} edited by {reviewer.id}")
        return invoice

    # ================= DECISIONS ===================

    def _decide(self, invoice_id: str, reviewer: User, new_status: InvoiceStatus, reason: Optional[str]) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        now = utcnow()
        try:
            swapped = compare_and_swap_status(
                self.db,
                Invoice,
                invoice_id,
                [InvoiceStatus.in_review],
                {
                    "status": new_status,
                    "reviewed_by": reviewer.id,
                    "reviewed_at": now,
                    "rejection_reason": reason,
                    "updated_at": now,
                    **_RELEASED_LOCK,
                },
                Invoice.current_reviewer == reviewer.id,
            )
            if not swapped:
                raise ConflictError("Invoice is not under your review")

            if new_status == InvoiceStatus.accepted and invoice.kwota is not None and to_money(invoice.kwota) > 0:
                self.ledger.post_transaction(
                    user_id=invoice.user_id,
                    amount=-to_money(invoice.kwota),
                    transaction_type=TransactionType.invoice_deduction,
                    created_by=reviewer.id,
                    reference_id=invoice.id,
                    notes=f"Invoice {invoice.invoice_number}",
                )
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"Error finalizing review of invoice {invoice_id}")
            raise

        logger.info(f"Invoice {invoice_id} {new_status.value} by {reviewer.id}")
        return reload(self.db, Invoice, invoice_id)

    def accept(self, invoice_id: str, reviewer: User) -> Invoice:
        invoice = self._decide(invoice_id, reviewer, InvoiceStatus.accepted, None)
        amount = f" ({format_pln(invoice.kwota)})" if invoice.kwota is not None else ""
        create_notification(
            self.db,
            invoice.user_id,
            NotificationType.invoice_accepted,
            "Invoice accepted",
            f"Your invoice {invoice.invoice_number}{amount} was accepted",
            invoice_id=invoice.id,
            company_id=invoice.company_id,
        )
        return invoice

    def reject(self, invoice_id: str, reviewer: User, reason: str) -> Invoice:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Rejection reason is required")
        invoice = self._decide(invoice_id, reviewer, InvoiceStatus.rejected, reason)
        create_notification(
            self.db,
            invoice.user_id,
            NotificationType.invoice_rejected,
            "Invoice rejected",
            f"Your invoice {invoice.invoice_number} was rejected. Reason: {reason}",
            invoice_id=invoice.id,
            company_id=invoice.company_id,
        )
        return invoice

    def request_re_review(self, invoice_id: str, reviewer: User, reason: str) -> Invoice:
        """
        Reopen a decided invoice. Only its reviewer may do this. Reopening an
        accepted invoice refunds the deduction so a later accept charges again.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Reason is required")

        invoice = self.get_invoice(invoice_id)
        if invoice.invoice_type == InvoiceType.correction:
            raise ValidationError("Correction invoices cannot be re-reviewed")
        if invoice.status not in REVIEWED_STATUSES:
            raise ConflictError("Only accepted or rejected invoices can be re-reviewed")
        if invoice.reviewed_by != reviewer.id:
            raise ForbiddenError("Only the accountant who reviewed this invoice can reopen it")
        if invoice.corrections:
            raise ConflictError("Invoice has corrections and cannot be reopened")

        previous_status = invoice.status
        was_charged = is_charged(invoice)
        try:
            swapped = compare_and_swap_status(
                self.db,
                Invoice,
                invoice_id,
                [previous_status],
                {"status": InvoiceStatus.re_review, "updated_at": utcnow(), "rejection_reason": reason},
                Invoice.reviewed_by == reviewer.id,
                ~correction_exists(Invoice.id),
            )
            if not swapped:
                raise ConflictError("Invoice was changed by someone else")

            if was_charged:
                self.ledger.post_transaction(
                    user_id=invoice.user_id,
                    amount=to_money(invoice.kwota),
                    transaction_type=TransactionType.invoice_refund,
                    created_by=reviewer.id,
                    reference_id=invoice.id,
                    notes=f"Re-review of invoice {invoice.invoice_number}",
                )
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"Error reopening invoice {invoice_id}")
            raise

        invoice = reload(self.db, Invoice, invoice_id)
        logger.info(f"Invoice {invoice_id} moved from {previous_status.value} to re_review by {reviewer.id}")
        create_notification(
            self.db,
            invoice.user_id,
            NotificationType.invoice_re_review,
            "Invoice reopened",
            f"Your invoice {invoice.invoice_number} is being reviewed again. Reason: {reason}",
            invoice_id=invoice.id,
            company_id=invoice.company_id,
        )
        return invoice

    # ================= DELETE ===================

    def delete(self, invoice_id: str, admin: User) -> Tuple[Optional[str], bool]:
        """
        Remove an invoice, refunding its deduction if it was charged.
        Returns (image_key, refunded) so the caller can drop the stored file.
        """
        invoice = self.get_invoice(invoice_id)
        if invoice.invoice_type == InvoiceType.correction:
            raise ValidationError("Correction invoices cannot be deleted")
        if invoice.corrections:
            raise ConflictError("Invoice has corrections and cannot be deleted")

        previous_status = invoice.status
        was_charged = is_charged(invoice)
        image_key = invoice.image_key
        owner_id = invoice.user_id
        kwota = invoice.kwota
        number = invoice.invoice_number

        try:
            deleted = (
                self.db.query(Invoice)
                .filter(
                    Invoice.id == invoice_id,
                    Invoice.status == previous_status,
                    ~correction_exists(Invoice.id),
                )
                .delete(synchronize_session=False)
            )
            if not deleted:
                raise ConflictError("Invoice was changed by someone else")
            self.db.expunge(invoice)

            if was_charged:
                self.ledger.post_transaction(
                    user_id=owner_id,
                    amount=to_money(kwota),
                    transaction_type=TransactionType.invoice_delete_refund,
                    created_by=admin.id,
                    reference_id=invoice_id,
                    notes=f"Deleted invoice {number}",
                )
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"Error deleting invoice {invoice_id}")
            raise

        logger.info(f"Invoice {invoice_id} deleted by admin {admin.id} (refunded={was_charged})")
        return image_key, was_charged
