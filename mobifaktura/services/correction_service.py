from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from mobifaktura.core.exceptions import AppError, ConflictError, NotFoundError, ValidationError
from mobifaktura.logger_config import logger
from mobifaktura.models.invoice import Invoice, InvoiceStatus, InvoiceType, correction_exists
from mobifaktura.models.notification import NotificationType
from mobifaktura.models.saldo_transaction import TransactionType
from mobifaktura.models.user import User
from mobifaktura.services.ledger_service import LedgerService
from mobifaktura.services.notification_service import create_notification
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.money import format_pln, to_money

JUSTIFICATION_MIN = 10


class CorrectionService:
    """Korekta: a credit note against an accepted invoice, refunded to its submitter."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)

    def _correctable_query(self):
        return self.db.query(Invoice).filter(
            Invoice.status == InvoiceStatus.accepted,
            Invoice.invoice_type != InvoiceType.correction,
            ~correction_exists(Invoice.id),
        )

    def create_correction(
        self,
        original_invoice_id: str,
        correction_amount,
        justification: str,
        actor: User,
        invoice_number: Optional[str] = None,
        image_key: Optional[str] = None,
    ) -> Invoice:
        amount = to_money(correction_amount)
        if amount <= 0:
            raise ValidationError("Correction amount must be greater than zero")

        justification = (justification or "").strip()
        if len(justification) < JUSTIFICATION_MIN:
            raise ValidationError(f"Justification must be at least {JUSTIFICATION_MIN} characters")

        original = self.db.query(Invoice).filter(Invoice.id == original_invoice_id).first()
        if not original:
            raise NotFoundError("Original invoice not found")
        if original.invoice_type == InvoiceType.correction:
            raise ValidationError("A correction cannot be corrected")
        if original.status != InvoiceStatus.accepted:
            raise ValidationError("Only accepted invoices can be corrected")
        if self.db.query(correction_exists(original.id)).scalar():
            raise ConflictError("This invoice already has a correction")

        now = utcnow()
        correction = Invoice(
            user_id=original.user_id,
            company_id=original.company_id,
            invoice_type=InvoiceType.correction,
            invoice_number=(invoice_number or "").strip() or f"KOR/{original.invoice_number}",
            ksef_number=None,
            kwota=None,
            description=f"Korekta do faktury {original.invoice_number}",
            justification=justification,
            image_key=image_key,
            status=InvoiceStatus.accepted,
            reviewed_by=actor.id,
            reviewed_at=now,
            original_invoice_id=original.id,
            correction_amount=amount,
        )
        try:
            self.db.add(correction)
            self.db.flush()
            self.ledger.post_transaction(
                user_id=original.user_id,
                amount=amount,
                transaction_type=TransactionType.invoice_refund,
                created_by=actor.id,
                reference_id=correction.id,
                notes=f"Correction of invoice {original.invoice_number}",
            )
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Concurrent correction of invoice {original_invoice_id} rejected")
            raise ConflictError("This invoice already has a correction")
        except Exception:
            self.db.rollback()
            logger.exception(f"Error creating correction for invoice {original_invoice_id}")
            raise

        self.db.refresh(correction)
        logger.info(
            f"Correction {correction.id} of {amount} for invoice {original_invoice_id} by {actor.id}"
        )
        create_notification(
            self.db,
            correction.user_id,
            NotificationType.invoice_accepted,
            "Invoice corrected",
            f"A correction of {format_pln(amount)} was issued for invoice {original.invoice_number}",
            invoice_id=correction.id,
            company_id=correction.company_id,
        )
        return correction

    def get_correction_invoices(
        self,
        company_id: Optional[str] = None,
        cursor: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Invoice], Optional[int]]:
        query = (
            self.db.query(Invoice)
            .options(
                joinedload(Invoice.user),
                joinedload(Invoice.company),
                joinedload(Invoice.original_invoice),
            )
            .filter(Invoice.invoice_type == InvoiceType.correction)
        )
        if company_id:
            query = query.filter(Invoice.company_id == company_id)
        rows = query.order_by(Invoice.created_at.desc(), Invoice.id.asc()).offset(cursor).limit(limit + 1).all()
        next_cursor = cursor + limit if len(rows) > limit else None
        return rows[:limit], next_cursor

    def get_correctable_invoices(
        self,
        company_id: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
    ) -> List[Invoice]:
        query = self._correctable_query().options(joinedload(Invoice.user), joinedload(Invoice.company))
        if company_id:
            query = query.filter(Invoice.company_id == company_id)
        if search:
            search_term = f"%{search}%"
            query = query.filter(
                or_(Invoice.invoice_number.ilike(search_term), Invoice.ksef_number.ilike(search_term))
            )
        return query.order_by(Invoice.reviewed_at.desc()).limit(limit).all()
