"""Budget request workflow."""
from datetime import timedelta
from decimal import Decimal

import pytest

from mobifaktura.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from mobifaktura.models import (
    BudgetRequest,
    BudgetRequestStatus,
    Notification,
    NotificationType,
    SaldoTransaction,
    TransactionType,
    User,
)
from mobifaktura.services.budget_request_service import BudgetRequestService
from mobifaktura.services.ledger_service import LedgerService
from mobifaktura.utils.dates import utcnow

from tests.conftest import DEFAULT_PASSWORD, grant, make_company, make_user


class TestCreate:
    def test_snapshots_current_saldo(self, db, employee, company, accountant) -> None:
        LedgerService(db).adjust_saldo(employee.id, Decimal("100"), "Saldo startowe", accountant)

        request = BudgetRequestService(db).create(employee, company.id, Decimal("500"), "Delegacja do Krakowa")

        assert request.status == BudgetRequestStatus.pending
        assert request.current_balance_at_request == Decimal("100.00")
        assert request.requested_amount == Decimal("500.00")

    def test_notifies_staff(self, db, employee, company, accountant, admin) -> None:
        BudgetRequestService(db).create(employee, company.id, Decimal("50"), "Paliwo na wyjazd")

        recipients = {
            n.user_id
            for n in db.query(Notification).filter(Notification.type == NotificationType.budget_request_submitted)
        }
        assert recipients == {accountant.id, admin.id}

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_amount_must_be_positive(self, db, employee, company, amount) -> None:
        with pytest.raises(ValidationError):
            BudgetRequestService(db).create(employee, company.id, Decimal(amount), "Zakup materiałów")

    @pytest.mark.parametrize("justification", ["abcd", "x" * 1001])
    def test_justification_length(self, db, employee, company, justification) -> None:
        with pytest.raises(ValidationError):
            BudgetRequestService(db).create(employee, company.id, Decimal("10"), justification)

    def test_unknown_company(self, db, employee) -> None:
        with pytest.raises(NotFoundError):
            BudgetRequestService(db).create(employee, "missing", Decimal("10"), "Zakup materiałów")

    def test_company_without_permission(self, db, employee) -> None:
        other = make_company(db)
        with pytest.raises(ForbiddenError):
            BudgetRequestService(db).create(employee, other.id, Decimal("10"), "Zakup materiałów")

    def test_one_pending_request_per_company(self, db, employee, company) -> None:
        service = BudgetRequestService(db)
        service.create(employee, company.id, Decimal("10"), "Pierwsza prośba")

        with pytest.raises(ConflictError):
            service.create(employee, company.id, Decimal("20"), "Druga prośba")

        second_company = make_company(db)
        grant(db, employee, second_company)
        assert service.create(employee, second_company.id, Decimal("20"), "Inna firma").status == BudgetRequestStatus.pending

    def test_new_request_allowed_after_review(self, db, employee, company, accountant) -> None:
        service = BudgetRequestService(db)
        first = service.create(employee, company.id, Decimal("10"), "Pierwsza prośba")
        service.review(first.id, "approve", accountant)

        again = service.create(employee, company.id, Decimal("20"), "Kolejna prośba")

        assert again.id != first.id


class TestReview:
    def test_approve_credits_saldo(self, db, employee, company, accountant) -> None:
        ledger = LedgerService(db)
        ledger.adjust_saldo(employee.id, Decimal("100"), "Saldo startowe", accountant)
        service = BudgetRequestService(db)
        request = service.create(employee, company.id, Decimal("500"), "Delegacja do Krakowa")

        reviewed = service.review(request.id, "approve", accountant)

        assert reviewed.status == BudgetRequestStatus.approved
        assert reviewed.reviewed_by == accountant.id
        assert reviewed.reviewed_at is not None
        assert ledger.get_saldo(employee.id) == Decimal("600.00")
        entry = (
            db.query(SaldoTransaction)
            .filter(SaldoTransaction.reference_id == request.id)
            .one()
        )
        assert entry.transaction_type == TransactionType.zasilenie
        assert entry.balance_before == Decimal("100.00")
        assert entry.balance_after == Decimal("600.00")
        assert entry.notes == "Delegacja do Krakowa"

    def test_ledger_notes_are_truncated(self, db, employee, company, accountant) -> None:
        service = BudgetRequestService(db)
        request = service.create(employee, company.id, Decimal("5"), "y" * 300)
        service.review(request.id, "approve", accountant)

        entry = db.query(SaldoTransaction).filter(SaldoTransaction.reference_id == request.id).one()
        assert len(entry.notes) == 100

    def test_reject_requires_reason(self, db, employee, company, accountant) -> None:
        service = BudgetRequestService(db)
        request = service.create(employee, company.id, Decimal("5"), "Drobne wydatki")

        with pytest.raises(ValidationError):
            service.review(request.id, "reject", accountant, "za krótko")

        rejected = service.review(request.id, "reject", accountant, "Brak uzasadnienia kosztów")
        assert rejected.status == BudgetRequestStatus.rejected
        assert rejected.rejection_reason == "Brak uzasadnienia kosztów"
        assert LedgerService(db).get_saldo(employee.id) == Decimal("0.00")

    def test_rejection_notifies_requester(self, db, employee, company, accountant) -> None:
        service = BudgetRequestService(db)
        request = service.create(employee, company.id, Decimal("5"), "Drobne wydatki")
        service.review(request.id, "reject", accountant, "Brak uzasadnienia kosztów")

        notification = (
            db.query(Notification)
            .filter(Notification.user_id == employee.id, Notification.type == NotificationType.budget_request_rejected)
            .one()
        )
        assert "Brak uzasadnienia kosztów" in notification.message

    def test_unknown_action(self, db, employee, company, accountant) -> None:
        request = BudgetRequestService(db).create(employee, company.id, Decimal("5"), "Drobne wydatki")
        with pytest.raises(ValidationError):
            BudgetRequestService(db).review(request.id, "maybe", accountant)

    def test_second_review_conflicts(self, db, employee, company, accountant) -> None:
        service = BudgetRequestService(db)
        request = service.create(employee, company.id, Decimal("70"), "Szkolenie BHP")
        service.review(request.id, "approve", accountant)

        with pytest.raises(ConflictError):
            service.review(request.id, "approve", accountant)
        assert LedgerService(db).get_saldo(employee.id) == Decimal("70.00")

    def test_concurrent_reviews_credit_once(self, db, other_session, employee, company, accountant, admin) -> None:
        request = BudgetRequestService(db).create(employee, company.id, Decimal("70"), "Szkolenie BHP")
        # both reviewers have the request open in the pending state
        other_session.get(BudgetRequest, request.id)
        other_admin = other_session.get(User, admin.id)

        BudgetRequestService(db).review(request.id, "approve", accountant)
        with pytest.raises(ConflictError):
            BudgetRequestService(other_session).review(request.id, "approve", other_admin)

        credits = db.query(SaldoTransaction).filter(SaldoTransaction.reference_id == request.id).count()
        assert credits == 1
        assert LedgerService(db).get_saldo(employee.id) == Decimal("70.00")


class TestReadAndDelete:
    def test_get_all_pages_with_cursor(self, db, employee, accountant) -> None:
        service = BudgetRequestService(db)
        for n in range(5):
            company = make_company(db)
            grant(db, employee, company)
            service.create(employee, company.id, Decimal(10 + n), f"Prośba numer {n}")

        first, cursor = service.get_all(sort_by="requested_amount", sort_order="asc", limit=2)
        second, cursor2 = service.get_all(sort_by="requested_amount", sort_order="asc", cursor=cursor, limit=2)
        third, cursor3 = service.get_all(sort_by="requested_amount", sort_order="asc", cursor=cursor2, limit=2)

        amounts = [r.requested_amount for r in first + second + third]
        assert amounts == [Decimal(v) for v in ("10.00", "11.00", "12.00", "13.00", "14.00")]
        assert (cursor, cursor2, cursor3) == (2, 4, None)

    def test_get_all_rejects_unknown_sort(self, db) -> None:
        with pytest.raises(ValidationError):
            BudgetRequestService(db).get_all(sort_by="password_hash")

    def test_pending_count(self, db, employee, company, accountant) -> None:
        service = BudgetRequestService(db)
        request = service.create(employee, company.id, Decimal("5"), "Drobne wydatki")
        assert service.get_pending_count() == 1
        service.review(request.id, "approve", accountant)
        assert service.get_pending_count() == 0

    def test_get_by_id_restricts_other_users(self, db, employee, company, accountant) -> None:
        request = BudgetRequestService(db).create(employee, company.id, Decimal("5"), "Drobne wydatki")
        stranger = make_user(db)

        with pytest.raises(ForbiddenError):
            BudgetRequestService(db).get_by_id(stranger, request.id)
        assert BudgetRequestService(db).get_by_id(accountant, request.id).id == request.id

    def test_cancel_only_pending_and_own(self, db, employee, company, accountant) -> None:
        service = BudgetRequestService(db)
        request = service.create(employee, company.id, Decimal("5"), "Drobne wydatki")

        with pytest.raises(ForbiddenError):
            service.cancel(make_user(db), request.id)
        service.cancel(employee, request.id)
        assert db.query(BudgetRequest).count() == 0

        request = service.create(employee, company.id, Decimal("5"), "Drobne wydatki")
        service.review(request.id, "approve", accountant)
        with pytest.raises(ConflictError):
            service.cancel(employee, request.id)

    def test_bulk_delete_requires_password(self, db, admin) -> None:
        with pytest.raises(ForbiddenError):
            BudgetRequestService(db).bulk_delete(admin, "wrong-password")

    def test_bulk_delete_filters(self, db, employee, company, accountant, admin) -> None:
        service = BudgetRequestService(db)
        old = service.create(employee, company.id, Decimal("5"), "Stara prośba")
        service.review(old.id, "reject", accountant, "Brak uzasadnienia kosztów")
        old_row = db.get(BudgetRequest, old.id)
        old_row.created_at = utcnow() - timedelta(days=200)
        db.commit()
        fresh = service.create(employee, company.id, Decimal("6"), "Nowa prośba")

        deleted = service.bulk_delete(
            admin,
            DEFAULT_PASSWORD,
            statuses=[BudgetRequestStatus.rejected, BudgetRequestStatus.approved],
            older_than_months=3,
        )

        assert deleted == 1
        assert [r.id for r in db.query(BudgetRequest).all()] == [fresh.id]

    def test_bulk_delete_month_needs_year(self, db, admin) -> None:
        with pytest.raises(ValidationError):
            BudgetRequestService(db).bulk_delete(admin, DEFAULT_PASSWORD, month=3)
