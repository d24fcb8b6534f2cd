"""Advances (zaliczki)."""
from datetime import timedelta
from decimal import Decimal

import pytest

from mobifaktura.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from mobifaktura.models import (
    Advance,
    AdvanceStatus,
    Notification,
    NotificationType,
    SaldoTransaction,
    TransactionType,
    User,
)
from mobifaktura.services.advance_service import AdvanceService
from mobifaktura.services.ledger_service import LedgerService
from mobifaktura.utils.dates import utcnow

from tests.conftest import DEFAULT_PASSWORD, make_company


@pytest.fixture
def advance(db, employee, company, accountant) -> Advance:
    return AdvanceService(db).create_manual(
        accountant, employee.id, company.id, Decimal("400.00"), "Wyjazd służbowy do Gdańska"
    )


class TestCreateManual:
    def test_starts_pending_without_ledger_effect(self, db, employee, company, accountant, advance) -> None:
        assert advance.status == AdvanceStatus.pending
        assert advance.amount == Decimal("400.00")
        assert advance.created_by == accountant.id
        assert advance.description == "Wyjazd służbowy do Gdańska"
        assert db.query(SaldoTransaction).count() == 0
        assert LedgerService(db).get_saldo(employee.id) == Decimal("0.00")

    @pytest.mark.parametrize("amount, description", [("0", "Wyjazd służbowy"), ("-5", "Wyjazd służbowy"), ("10", "abc")])
    def test_input_validation(self, db, employee, company, accountant, amount, description) -> None:
        with pytest.raises(ValidationError):
            AdvanceService(db).create_manual(accountant, employee.id, company.id, Decimal(amount), description)

    def test_unknown_user(self, db, company, accountant) -> None:
        with pytest.raises(NotFoundError):
            AdvanceService(db).create_manual(accountant, "missing", company.id, Decimal("10"), "Wyjazd służbowy")

    def test_unknown_company(self, db, employee, accountant) -> None:
        with pytest.raises(NotFoundError):
            AdvanceService(db).create_manual(accountant, employee.id, "missing", Decimal("10"), "Wyjazd służbowy")


class TestTransfer:
    def test_credits_saldo(self, db, employee, accountant, advance) -> None:
        LedgerService(db).adjust_saldo(employee.id, Decimal("-100"), "Saldo startowe", accountant)

        transferred = AdvanceService(db).transfer(advance.id, accountant, transfer_number=" PRZ/2026/03/1 ")

        assert transferred.status == AdvanceStatus.transferred
        assert transferred.transfer_number == "PRZ/2026/03/1"
        assert transferred.transferred_by == accountant.id
        assert transferred.transferred_at is not None
        entry = db.query(SaldoTransaction).filter(SaldoTransaction.reference_id == advance.id).one()
        assert entry.transaction_type == TransactionType.advance_credit
        assert (entry.amount, entry.balance_before, entry.balance_after) == (
            Decimal("400.00"),
            Decimal("-100.00"),
            Decimal("300.00"),
        )
        assert LedgerService(db).get_saldo(employee.id) == Decimal("300.00")

    def test_notifies_owner(self, db, employee, accountant, advance) -> None:
        AdvanceService(db).transfer(advance.id, accountant)

        notification = db.query(Notification).filter(Notification.user_id == employee.id).one()
        assert notification.type == NotificationType.saldo_adjusted
        assert "400.00 PLN" in notification.message

    def test_second_transfer_conflicts(self, db, employee, accountant, advance) -> None:
        service = AdvanceService(db)
        service.transfer(advance.id, accountant)

        with pytest.raises(ConflictError):
            service.transfer(advance.id, accountant)
        assert LedgerService(db).get_saldo(employee.id) == Decimal("400.00")

    def test_concurrent_transfers_credit_once(self, db, other_session, employee, accountant, admin, advance) -> None:
        # both accountants have the advance open while it is still pending
        other_session.get(Advance, advance.id)
        other_admin = other_session.get(User, admin.id)

        AdvanceService(db).transfer(advance.id, accountant)
        with pytest.raises(ConflictError):
            AdvanceService(other_session).transfer(advance.id, other_admin)

        credits = db.query(SaldoTransaction).filter(SaldoTransaction.reference_id == advance.id).count()
        assert credits == 1
        assert LedgerService(db).get_saldo(employee.id) == Decimal("400.00")

    def test_transfer_number_length(self, db, accountant, advance) -> None:
        with pytest.raises(ValidationError):
            AdvanceService(db).transfer(advance.id, accountant, transfer_number="x" * 256)

    def test_missing_advance(self, db, accountant) -> None:
        with pytest.raises(NotFoundError):
            AdvanceService(db).transfer("missing", accountant)


class TestSettle:
    def test_pending_cannot_be_settled(self, db, accountant, advance) -> None:
        with pytest.raises(ConflictError):
            AdvanceService(db).settle(advance.id, accountant)

    def test_settles_transferred_without_ledger_effect(self, db, employee, accountant, admin, advance) -> None:
        service = AdvanceService(db)
        service.transfer(advance.id, accountant)

        settled = service.settle(advance.id, admin)

        assert settled.status == AdvanceStatus.settled
        assert settled.settled_by == admin.id
        assert settled.settled_at is not None
        assert db.query(SaldoTransaction).count() == 1
        with pytest.raises(ConflictError):
            service.settle(advance.id, admin)


class TestDelete:
    def test_requires_password(self, db, accountant, advance) -> None:
        with pytest.raises(ForbiddenError):
            AdvanceService(db).delete(advance.id, accountant, "wrong-password")
        assert db.query(Advance).count() == 1

    def test_pending_delete_has_no_ledger_effect(self, db, accountant, advance) -> None:
        assert AdvanceService(db).delete(advance.id, accountant, DEFAULT_PASSWORD) is False
        assert db.query(Advance).count() == 0
        assert db.query(SaldoTransaction).count() == 0

    @pytest.mark.parametrize("settle", [False, True])
    def test_credited_delete_reverses_saldo(self, db, employee, accountant, advance, settle) -> None:
        service = AdvanceService(db)
        service.transfer(advance.id, accountant)
        if settle:
            service.settle(advance.id, accountant)

        assert service.delete(advance.id, accountant, DEFAULT_PASSWORD) is True

        ledger = LedgerService(db)
        assert ledger.get_saldo(employee.id) == Decimal("0.00")
        reversal = (
            db.query(SaldoTransaction)
            .filter(SaldoTransaction.transaction_type == TransactionType.adjustment)
            .one()
        )
        assert reversal.amount == Decimal("-400.00")
        assert reversal.reference_id == advance.id
        assert ledger.reconcile_user(employee.id)["consistent"] is True

    def test_missing_advance(self, db, accountant) -> None:
        with pytest.raises(NotFoundError):
            AdvanceService(db).delete("missing", accountant, DEFAULT_PASSWORD)


class TestRead:
    def test_filters_and_cursor(self, db, employee, company, accountant, advance) -> None:
        service = AdvanceService(db)
        other_company = make_company(db, name="Budimex Serwis")
        second = service.create_manual(accountant, employee.id, other_company.id, Decimal("50"), "Paliwo na trasę")
        service.transfer(second.id, accountant)

        pending, _ = service.get_all(status=AdvanceStatus.pending)
        assert [a.id for a in pending] == [advance.id]

        found, _ = service.get_all(search="budimex")
        assert [a.id for a in found] == [second.id]

        first_page, cursor = service.get_all(limit=1)
        second_page, last_cursor = service.get_all(cursor=cursor, limit=1)
        assert (cursor, last_cursor) == (1, None)
        assert {first_page[0].id, second_page[0].id} == {advance.id, second.id}

    def test_previous_advance_of_same_user(self, db, employee, company, accountant, advance) -> None:
        row = db.get(Advance, advance.id)
        row.created_at = utcnow() - timedelta(days=3)
        db.commit()
        later = AdvanceService(db).create_manual(accountant, employee.id, company.id, Decimal("80"), "Nocleg w hotelu")

        service = AdvanceService(db)
        assert service.get_previous(service.get_by_id(later.id)).id == advance.id
        assert service.get_previous(service.get_by_id(advance.id)) is None

    def test_get_by_id_missing(self, db) -> None:
        with pytest.raises(NotFoundError):
            AdvanceService(db).get_by_id("missing")
