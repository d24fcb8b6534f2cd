from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from mobifaktura.core.exceptions import (
    AppError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from mobifaktura.core.permissions import Capability, ensure_company_access, has_capability
from mobifaktura.core.security import verify_password
from mobifaktura.logger_config import logger
from mobifaktura.models.budget_request import BudgetRequest, BudgetRequestStatus
from mobifaktura.models.company import Company
from mobifaktura.models.notification import NotificationType
from mobifaktura.models.saldo_transaction import TransactionType
from mobifaktura.models.user import User
from mobifaktura.services.ledger_service import LedgerService
from mobifaktura.services.notification_service import create_notification, notify_many, staff_user_ids
from mobifaktura.services.transitions import compare_and_swap_status, reload
from mobifaktura.utils.dates import month_bounds, months_ago, utcnow
from mobifaktura.utils.money import format_pln, to_money

JUSTIFICATION_MIN = 5
JUSTIFICATION_MAX = 1000
REJECTION_REASON_MIN = 10
LEDGER_NOTES_MAX = 100

SORT_COLUMNS = {
    "created_at": BudgetRequest.created_at,
    "requested_amount": BudgetRequest.requested_amount,
    "status": BudgetRequest.status,
}


class BudgetRequestService:
    """
    Budget top-up requests: pending -> approved | rejected.

    Approval credits the requester's saldo in the same transaction as the
    status change. Both transitions are compare-and-swap on ``pending``.
    """
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)

    # ================= CREATE ===================

    def create(self, user: User, company_id: str, requested_amount, justification: str) -> BudgetRequest:
        amount = to_money(requested_amount)
        if amount <= 0:
            raise ValidationError("Requested amount must be greater than zero")

        justification = (justification or "").strip()
        if not JUSTIFICATION_MIN <= len(justification) <= JUSTIFICATION_MAX:
            raise ValidationError(
                f"Justification must be between {JUSTIFICATION_MIN} and {JUSTIFICATION_MAX} characters"
            )

        company = self.db.query(Company).filter(Company.id == company_id).first()
        if not company:
            raise NotFoundError("Company not found")
        ensure_company_access(self.db, user, company_id)

        existing = (
            self.db.query(BudgetRequest.id)
            .filter(
                BudgetRequest.user_id == user.id,
                BudgetRequest.company_id == company_id,
                BudgetRequest.status == BudgetRequestStatus.pending,
            )
            .first()
        )
        if existing:
            raise ConflictError("You already have a pending budget request for this company")

        request = BudgetRequest(
            user_id=user.id,
            company_id=company_id,
            requested_amount=amount,
            justification=justification,
            current_balance_at_request=self.ledger.get_saldo(user.id),
            status=BudgetRequestStatus.pending,
        )
        self.db.add(request)
        try:
            self.db.commit()
        except IntegrityError:
            # lost the race against the partial unique index
            self.db.rollback()
            raise ConflictError("You already have a pending budget request for this company")
        except Exception:
            self.db.rollback()
            logger.exception("Error creating budget request")
            raise
        self.db.refresh(request)

        logger.info(f"Budget request {request.id} for {amount} created by {user.id}")
        notify_many(
            self.db,
            staff_user_ids(self.db),
            NotificationType.budget_request_submitted,
            "New budget request",
            f"{user.name} requested {format_pln(amount)} for {company.name}",
            company_id=company_id,
        )
        return request

    # ================= READ ===================

    def _base_query(self):
        return self.db.query(BudgetRequest).options(
            joinedload(BudgetRequest.user),
            joinedload(BudgetRequest.company),
            joinedload(BudgetRequest.reviewer),
        )

    def my_requests(self, user: User, status: Optional[BudgetRequestStatus] = None) -> List[BudgetRequest]:
        query = self._base_query().filter(BudgetRequest.user_id == user.id)
        if status:
            query = query.filter(BudgetRequest.status == status)
        return query.order_by(BudgetRequest.created_at.desc()).all()

    def get_all(
        self,
        status: Optional[BudgetRequestStatus] = None,
        user_id: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        cursor: int = 0,
        limit: int = 20,
    ) -> Tuple[List[BudgetRequest], Optional[int]]:
        """Page of requests and the cursor of the next page (None on the last one)."""
        query = self._base_query()

        if status:
            query = query.filter(BudgetRequest.status == status)
        if user_id:
            query = query.filter(BudgetRequest.user_id == user_id)
        if search:
            search_term = f"%{search}%"
            query = query.join(User, BudgetRequest.user_id == User.id).filter(
                or_(
                    User.name.ilike(search_term),
                    User.email.ilike(search_term),
                    BudgetRequest.justification.ilike(search_term),
                )
            )

        column = SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationError(f"Cannot sort by {sort_by}")
        ordering = column.asc() if sort_order == "asc" else column.desc()
        query = query.order_by(ordering, BudgetRequest.id.asc())

        # fetch one extra row to learn whether another page exists
        rows = query.offset(cursor).limit(limit + 1).all()
        next_cursor = cursor + limit if len(rows) > limit else None
        return rows[:limit], next_cursor

    def get_by_id(self, viewer: User, request_id: str) -> BudgetRequest:
        request = self._base_query().filter(BudgetRequest.id == request_id).first()
        if not request:
            raise NotFoundError("Budget request not found")
        if request.user_id != viewer.id and not has_capability(viewer, Capability.review_budget_request):
            raise ForbiddenError("You don't have access to this budget request")
        return request

    def get_pending_count(self) -> int:
        return (
            self.db.query(BudgetRequest)
            .filter(BudgetRequest.status == BudgetRequestStatus.pending)
            .count()
        )

    # ================= REVIEW ===================

    def review(
        self,
        request_id: str,
        action: str,
        reviewer: User,
        rejection_reason: Optional[str] = None,
    ) -> BudgetRequest:
        if action not in ("approve", "reject"):
            raise ValidationError("Action must be 'approve' or 'reject'")

        reason = (rejection_reason or "").strip()
        if action == "reject" and len(reason) < REJECTION_REASON_MIN:
            raise ValidationError(
                f"Rejection reason must be at least {REJECTION_REASON_MIN} characters"
            )

        request = self.db.query(BudgetRequest).filter(BudgetRequest.id == request_id).first()
        if not request:
            raise NotFoundError("Budget request not found")

        new_status = BudgetRequestStatus.approved if action == "approve" else BudgetRequestStatus.rejected
        try:
            swapped = compare_and_swap_status(
                self.db,
                BudgetRequest,
                request_id,
                [BudgetRequestStatus.pending],
                {
                    "status": new_status,
                    "reviewed_by": reviewer.id,
                    "reviewed_at": utcnow(),
                    "rejection_reason": reason if action == "reject" else None,
                    "updated_at": utcnow(),
                },
            )
            if not swapped:
                raise ConflictError("This budget request has already been reviewed")

            if action == "approve":
                self.ledger.post_transaction(
                    user_id=request.user_id,
                    amount=request.requested_amount,
                    transaction_type=TransactionType.zasilenie,
                    created_by=reviewer.id,
                    reference_id=request.id,
                    notes=request.justification[:LEDGER_NOTES_MAX],
                )
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            logger.exception(f"Error reviewing budget request {request_id}")
            raise

        request = reload(self.db, BudgetRequest, request_id)
        logger.info(f"Budget request {request_id} {new_status.value} by {reviewer.id}")

        if new_status == BudgetRequestStatus.approved:
            create_notification(
                self.db,
                request.user_id,
                NotificationType.budget_request_approved,
                "Budget request approved",
                f"Your request for {format_pln(request.requested_amount)} was approved",
                company_id=request.company_id,
            )
        else:
            create_notification(
                self.db,
                request.user_id,
                NotificationType.budget_request_rejected,
                "Budget request rejected",
                f"Your request for {format_pln(request.requested_amount)} was rejected. Reason: {reason}",
                company_id=request.company_id,
            )
        return request

    # ================= DELETE ===================

    def cancel(self, user: User, request_id: str) -> None:
        """Owner withdraws a request that nobody has reviewed yet."""
        request = self.db.query(BudgetRequest).filter(BudgetRequest.id == request_id).first()
        if not request:
            raise NotFoundError("Budget request not found")
        if request.user_id != user.id:
            raise ForbiddenError("You can only cancel your own budget requests")

        deleted = (
            self.db.query(BudgetRequest)
            .filter(BudgetRequest.id == request_id, BudgetRequest.status == BudgetRequestStatus.pending)
            .delete(synchronize_session=False)
        )
        if not deleted:
            self.db.rollback()
            raise ConflictError("Only pending budget requests can be cancelled")
        self.db.commit()
        logger.info(f"Budget request {request_id} cancelled by {user.id}")

    def bulk_delete(
        self,
        admin: User,
        password: str,
        statuses: Optional[List[BudgetRequestStatus]] = None,
        user_id: Optional[str] = None,
        older_than_months: Optional[int] = None,
        year: Optional[int] = None,
        month: Optional[int] = None,
    ) -> int:
        """Purge resolved requests. Re-verifies the admin password first."""
        if not verify_password(password, admin.password_hash):
            raise ForbiddenError("Invalid password")

        query = self.db.query(BudgetRequest)
        if statuses:
            query = query.filter(BudgetRequest.status.in_(statuses))
        if user_id:
            query = query.filter(BudgetRequest.user_id == user_id)
        if older_than_months is not None:
            if older_than_months < 1:
                raise ValidationError("older_than_months must be at least 1")
            query = query.filter(BudgetRequest.created_at < months_ago(utcnow(), older_than_months))
        if month is not None and year is None:
            raise ValidationError("month requires year")
        if year is not None:
            if month is not None and not 1 <= month <= 12:
                raise ValidationError("month must be between 1 and 12")
            start, end = month_bounds(year, month)
            query = query.filter(BudgetRequest.created_at >= start, BudgetRequest.created_at < end)

        try:
            deleted = query.delete(synchronize_session=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception("Error bulk deleting budget requests")
            raise

        logger.info(f"Admin {admin.id} deleted {deleted} budget requests")
        return deleted
