from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from mobifaktura.core.exceptions import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from mobifaktura.core.security import verify_password
from mobifaktura.logger_config import logger
from mobifaktura.models.advance import Advance, AdvanceStatus
from mobifaktura.models.company import Company
from mobifaktura.models.notification import NotificationType
from mobifaktura.models.saldo_transaction import TransactionType
from mobifaktura.models.user import User
from mobifaktura.services.ledger_service import LedgerService
from mobifaktura.services.notification_service import create_notification
from mobifaktura.services.transitions import compare_and_swap_status, reload
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.money import format_pln, to_money

DESCRIPTION_MIN = 5
DESCRIPTION_MAX = 2000
TRANSFER_NUMBER_MAX = 255

# Advances whose amount currently sits on the owner's saldo
CREDITED_STATUSES = (AdvanceStatus.transferred, AdvanceStatus.settled)


class AdvanceService:
    """
    Zaliczki: pending -> transferred -> settled.

    Transfer credits the employee's saldo in the same transaction as the
    status change. Deleting a credited advance posts the reversing entry.
    """
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)

    # ================= READ ===================

    def _base_query(self):
        return self.db.query(Advance).options(
            joinedload(Advance.user),
            joinedload(Advance.company),
            joinedload(Advance.creator),
            joinedload(Advance.transferrer),
            joinedload(Advance.settler),
        )

    def get_all(
        self,
        status: Optional[AdvanceStatus] = None,
        user_id: Optional[str] = None,
        search: Optional[str] = None,
        cursor: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Advance], Optional[int]]:
        query = self._base_query()
        if status:
            query = query.filter(Advance.status == status)
        if user_id:
            query = query.filter(Advance.user_id == user_id)
        if search and search.strip():
            search_term = f"%{search.strip()}%"
            query = (
                query.join(User, Advance.user_id == User.id)
                .join(Company, Advance.company_id == Company.id)
                .filter(
                    or_(
                        Advance.id.ilike(search_term),
                        User.name.ilike(search_term),
                        User.email.ilike(search_term),
                        Company.name.ilike(search_term),
                        Advance.description.ilike(search_term),
                    )
                )
            )

        rows = (
            query.order_by(Advance.created_at.desc(), Advance.id.asc())
            .offset(cursor)
            .limit(limit + 1)
            .all()
        )
        next_cursor = cursor + limit if len(rows) > limit else None
        return rows[:limit], next_cursor

    def get_by_id(self, advance_id: str) -> Advance:
        advance = self._base_query().filter(Advance.id == advance_id).first()
        if not advance:
            raise NotFoundError("Advance not found")
        return advance

    def get_previous(self, advance: Advance) -> Optional[Advance]:
        """The same employee's advance created just before this one."""
        return (
            self.db.query(Advance)
            .filter(Advance.user_id == advance.user_id, Advance.created_at < advance.created_at)
            .order_by(Advance.created_at.desc())
            .first()
        )

    # ================= CREATE ===================

    def create_manual(self, actor: User, user_id: str, company_id: str, amount, description: str) -> Advance:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        description = (description or "").strip()
        if not DESCRIPTION_MIN <= len(description) <= DESCRIPTION_MAX:
            raise ValidationError(
                f"Description must be between {DESCRIPTION_MIN} and {DESCRIPTION_MAX} characters"
            )

        if not self.db.query(User.id).filter(User.id == user_id).first():
            raise NotFoundError("User not found")
        if not self.db.query(Company.id).filter(Company.id == company_id).first():
            raise NotFoundError("Company not found")

        advance = Advance(
            user_id=user_id,
            company_id=company_id,
            amount=amount,
            status=AdvanceStatus.pending,
            description=description,
            created_by=actor.id,
        )
        self.db.add(advance)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Error creating advance")
            raise
        self.db.refresh(advance)

        logger.info(f"Advance {advance.id} of {amount} for user {user_id} created by {actor.id}")
        return advance

    # ================= TRANSITIONS ===================

    def transfer(self, advance_id: str, actor: User, transfer_number: Optional[str] = None) -> Advance:
        """Mark the money as paid out and credit the employee's saldo."""
        transfer_number = (transfer_number or "").strip() or None
        if transfer_number and len(transfer_number) > TRANSFER_NUMBER_MAX:
            raise ValidationError(f"Transfer number cannot exceed {TRANSFER_NUMBER_MAX} characters")

        advance = self.db.query(Advance).filter(Advance.id == advance_id).first()
        if not advance:
            raise NotFoundError("Advance not found")

        now = utcnow()
        try:
            swapped = compare_and_swap_status(
                self.db,
                Advance,
                advance_id,
                [AdvanceStatus.pending],
                {
                    "status": AdvanceStatus.transferred,
                    "transfer_number": transfer_number,
                    "transferred_by": actor.id,
                    "transferred_at": now,
                    "updated_at": now,
                },
            )
            if not swapped:
                raise ConflictError("Only pending advances can be transferred")

            self.ledger.post_transaction(
                user_id=advance.user_id,
                amount=advance.amount,
                transaction_type=TransactionType.advance_credit,
                created_by=actor.id,
                reference_id=advance.id,
                notes="Advance granted by accountant",
            )
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"Error transferring advance {advance_id}")
            raise

        advance = reload(self.db, Advance, advance_id)
        logger.info(f"Advance {advance_id} transferred by {actor.id}")
        create_notification(
            self.db,
            advance.user_id,
            NotificationType.saldo_adjusted,
            "Advance transferred",
            f"An advance of {format_pln(advance.amount)} was added to your saldo",
            company_id=advance.company_id,
        )
        return advance

    def settle(self, advance_id: str, actor: User) -> Advance:
        advance = self.db.query(Advance).filter(Advance.id == advance_id).first()
        if not advance:
            raise NotFoundError("Advance not found")

        now = utcnow()
        swapped = compare_and_swap_status(
            self.db,
            Advance,
            advance_id,
            [AdvanceStatus.transferred],
            {"status": AdvanceStatus.settled, "settled_by": actor.id, "settled_at": now, "updated_at": now},
        )
        if not swapped:
            self.db.rollback()
            raise ConflictError("Only transferred advances can be settled")
        self.db.commit()

        logger.info(f"Advance {advance_id} settled by {actor.id}")
        return reload(self.db, Advance, advance_id)

    # ================= DELETE ===================

    def delete(self, advance_id: str, actor: User, password: str) -> bool:
        """
        Remove an advance. Re-verifies the caller's password. A transferred
        or settled advance is reversed on the saldo first. Returns whether a
        reversal was posted.
        """
        if not verify_password(password, actor.password_hash):
            raise ForbiddenError("Invalid password")

        advance = self.db.query(Advance).filter(Advance.id == advance_id).first()
        if not advance:
            raise NotFoundError("Advance not found")

        previous_status = advance.status
        was_credited = previous_status in CREDITED_STATUSES
        owner_id = advance.user_id
        amount = to_money(advance.amount)

        try:
            deleted = (
                self.db.query(Advance)
                .filter(Advance.id == advance_id, Advance.status == previous_status)
                .delete(synchronize_session=False)
            )
            if not deleted:
                raise ConflictError("Advance was changed by someone else")
            self.db.expunge(advance)

            if was_credited:
                self.ledger.post_transaction(
                    user_id=owner_id,
                    amount=-amount,
                    transaction_type=TransactionType.adjustment,
                    created_by=actor.id,
                    reference_id=advance_id,
                    notes="Advance deleted by accountant",
                )
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"Error deleting advance {advance_id}")
            raise

        logger.info(f"Advance {advance_id} deleted by {actor.id} (reversed={was_credited})")
        return was_credited
