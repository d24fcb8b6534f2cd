from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import Date, case, cast, func, update
from sqlalchemy.orm import Session, aliased
from sqlalchemy.orm.util import identity_key

from mobifaktura.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from mobifaktura.core.permissions import Capability, has_capability
from mobifaktura.logger_config import logger
from mobifaktura.models.notification import NotificationType
from mobifaktura.models.saldo_transaction import SaldoTransaction, TransactionType
from mobifaktura.models.user import User, UserRole
from mobifaktura.services.notification_service import create_notification
from mobifaktura.utils.dates import utcnow
from mobifaktura.utils.money import ZERO, format_pln, to_money

ADJUSTMENT_NOTES_MIN = 5
ADJUSTMENT_NOTES_MAX = 500
HISTORY_MAX_LIMIT = 100


def replay_balance(amounts: Iterable, initial=ZERO) -> Decimal:
    """Running sum of ledger amounts starting at ``initial``."""
    balance = to_money(initial)
    for amount in amounts:
        balance = to_money(balance + to_money(amount))
    return balance


class LedgerService:
    """
    Append-only saldo ledger and the cached balance on ``users.saldo``.

    ``post_transaction`` is the only writer of either. It never commits;
    the caller commits once together with whatever state change caused
    the entry.
    """
    def __init__(self, db: Session):
        self.db = db

    # ================= WRITE SIDE ===================

    def post_transaction(
        self,
        user_id: str,
        amount,
        transaction_type: TransactionType,
        created_by: Optional[str],
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SaldoTransaction:
        amount = to_money(amount)
        if amount == 0:
            raise ValidationError("Transaction amount cannot be zero")

        self.db.flush()
        # Atomic in-database increment; concurrent posts serialize on the row lock
        result = self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(saldo=User.saldo + amount)
            .returning(User.saldo)
            .execution_options(synchronize_session=False)
        )
        row = result.first()
        if row is None:
            raise NotFoundError("User not found")

        balance_after = to_money(row[0])
        balance_before = to_money(balance_after - amount)

        cached = self.db.identity_map.get(identity_key(User, user_id))
        if cached is not None:
            self.db.expire(cached, ["saldo"])

        entry = SaldoTransaction(
            user_id=user_id,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            transaction_type=transaction_type,
            reference_id=reference_id,
            notes=notes,
            created_by=created_by,
        )
        self.db.add(entry)
        self.db.flush()

        logger.info(
            f"Ledger {transaction_type.value} for user {user_id}: {amount} "
            f"({balance_before} -> {balance_after}) ref={reference_id}"
        )
        return entry

    def adjust_saldo(self, user_id: str, amount, notes: str, actor: User) -> SaldoTransaction:
        """Manual balance correction by an accountant or admin."""
        amount = to_money(amount)
        if amount == 0:
            raise ValidationError("Adjustment amount cannot be zero")

        notes = (notes or "").strip()
        if not ADJUSTMENT_NOTES_MIN <= len(notes) <= ADJUSTMENT_NOTES_MAX:
            raise ValidationError(
                f"Notes must be between {ADJUSTMENT_NOTES_MIN} and {ADJUSTMENT_NOTES_MAX} characters"
            )

        if not self.db.query(User.id).filter(User.id == user_id).first():
            raise NotFoundError("User not found")

        try:
            entry = self.post_transaction(
                user_id=user_id,
                amount=amount,
                transaction_type=TransactionType.adjustment,
                created_by=actor.id,
                notes=notes,
            )
            self.db.commit()
            self.db.refresh(entry)
        except Exception:
            self.db.rollback()
            logger.exception(f"Error adjusting saldo for user {user_id}")
            raise

        direction = "increased" if amount > 0 else "decreased"
        create_notification(
            self.db,
            user_id,
            NotificationType.saldo_adjusted,
            "Saldo adjusted",
            f"Your saldo was {direction} by {format_pln(abs(amount))}. Reason: {notes}",
        )
        return entry

    # ================= READ SIDE ===================

    def get_saldo(self, user_id: str) -> Decimal:
        row = self.db.query(User.saldo).filter(User.id == user_id).first()
        if row is None:
            raise NotFoundError("User not found")
        return to_money(row.saldo or 0)

    def get_user_saldo(self, user_id: str) -> User:
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_saldo_history(
        self,
        viewer: User,
        user_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Tuple[SaldoTransaction, Optional[str]]], int]:
        """
        Ledger entries newest first, paired with the creator's name.
        Users without ``view_all_saldo`` may only read their own history.
        """
        target_id = user_id or viewer.id
        if target_id != viewer.id and not has_capability(viewer, Capability.view_all_saldo):
            raise ForbiddenError("You can only view your own saldo history")

        if not 1 <= limit <= HISTORY_MAX_LIMIT:
            raise ValidationError(f"Limit must be between 1 and {HISTORY_MAX_LIMIT}")
        if offset < 0:
            raise ValidationError("Offset cannot be negative")

        creator = aliased(User)
        query = (
            self.db.query(SaldoTransaction, creator.name)
            .outerjoin(creator, SaldoTransaction.created_by == creator.id)
            .filter(SaldoTransaction.user_id == target_id)
        )
        total = query.count()
        rows = (
            query.order_by(SaldoTransaction.created_at.desc(), SaldoTransaction.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [(row[0], row[1]) for row in rows], total

    def get_all_users_saldo(self, search: Optional[str] = None, role: Optional[UserRole] = None) -> List[User]:
        query = self.db.query(User)
        if role:
            query = query.filter(User.role == role)
        if search:
            search_term = f"%{search}%"
            query = query.filter((User.name.ilike(search_term)) | (User.email.ilike(search_term)))
        return query.order_by(User.name).all()

    def get_saldo_stats(self) -> dict:
        """Aggregates over regular users' balances."""
        row = (
            self.db.query(
                func.count(User.id),
                func.coalesce(func.sum(User.saldo), 0),
                func.coalesce(func.sum(case((User.saldo > 0, 1), else_=0)), 0),
                func.coalesce(func.sum(case((User.saldo < 0, 1), else_=0)), 0),
                func.coalesce(func.sum(case((User.saldo == 0, 1), else_=0)), 0),
            )
            .filter(User.role == UserRole.user)
            .one()
        )
        count, total, positive, negative, zero = row
        total = to_money(total)
        average = to_money(total / count) if count else ZERO
        return {
            "total_users": int(count),
            "total_saldo": total,
            "average_saldo": average,
            "positive_count": int(positive),
            "negative_count": int(negative),
            "zero_count": int(zero),
        }

    def export_saldo_history(
        self,
        user_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[dict]:
        """Flat rows for the CSV/Excel exporters."""
        owner = aliased(User)
        creator = aliased(User)
        query = (
            self.db.query(SaldoTransaction, owner.name, owner.email, creator.name)
            .join(owner, SaldoTransaction.user_id == owner.id)
            .outerjoin(creator, SaldoTransaction.created_by == creator.id)
        )
        if user_id:
            query = query.filter(SaldoTransaction.user_id == user_id)
        if start_date:
            query = query.filter(cast(SaldoTransaction.created_at, Date) >= start_date)
            logger.debug(f"Filtering export by start_date: {start_date}")
        if end_date:
            query = query.filter(cast(SaldoTransaction.created_at, Date) <= end_date)
            logger.debug(f"Filtering export by end_date: {end_date}")

        rows = query.order_by(SaldoTransaction.created_at.asc(), SaldoTransaction.id.asc()).all()
        return [
            {
                "id": entry.id,
                "created_at": entry.created_at,
                "user_name": user_name,
                "user_email": user_email,
                "transaction_type": entry.transaction_type.value,
                "amount": to_money(entry.amount),
                "balance_before": to_money(entry.balance_before),
                "balance_after": to_money(entry.balance_after),
                "reference_id": entry.reference_id,
                "notes": entry.notes,
                "created_by_name": creator_name,
            }
            for entry, user_name, user_email, creator_name in rows
        ]

    def export_all_users_saldo(self) -> List[dict]:
        users = self.get_all_users_saldo()
        return [
            {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "role": user.role.value,
                "saldo": to_money(user.saldo or 0),
            }
            for user in users
        ]

    # ================= RECONCILIATION ===================

    def ledger_sum(self, user_id: str) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(SaldoTransaction.amount), 0))
            .filter(SaldoTransaction.user_id == user_id)
            .scalar()
        )
        return to_money(total)

    def replay_user(self, user_id: str) -> Decimal:
        amounts = (
            row.amount
            for row in self.db.query(SaldoTransaction.amount)
            .filter(SaldoTransaction.user_id == user_id)
            .order_by(SaldoTransaction.created_at.asc(), SaldoTransaction.id.asc())
        )
        return replay_balance(amounts)

    def reconcile_user(self, user_id: str) -> dict:
        cached = self.get_saldo(user_id)
        replayed = self.replay_user(user_id)
        drift = to_money(cached - replayed)
        if drift != 0:
            logger.warning(f"Saldo drift for user {user_id}: cached={cached} ledger={replayed}")
        return {
            "user_id": user_id,
            "cached_saldo": cached,
            "ledger_saldo": replayed,
            "drift": drift,
            "consistent": drift == 0,
            "checked_at": utcnow(),
        }
