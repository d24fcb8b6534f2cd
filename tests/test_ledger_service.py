"""Saldo ledger and cached balance."""
from decimal import Decimal

import pytest

from mobifaktura.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from mobifaktura.models import Notification, NotificationType, SaldoTransaction, TransactionType, UserRole
from mobifaktura.services.ledger_service import LedgerService, replay_balance

from tests.conftest import make_user


class TestPostTransaction:
    def test_credit_updates_cached_saldo_and_writes_entry(self, db, accountant) -> None:
        user = make_user(db)
        ledger = LedgerService(db)

        entry = ledger.post_transaction(user.id, Decimal("150.25"), TransactionType.zasilenie, accountant.id, "ref-1")
        db.commit()

        assert entry.balance_before == Decimal("0.00")
        assert entry.balance_after == Decimal("150.25")
        assert ledger.get_saldo(user.id) == Decimal("150.25")

    def test_consecutive_entries_chain_balances(self, db, accountant) -> None:
        user = make_user(db)
        ledger = LedgerService(db)

        first = ledger.post_transaction(user.id, Decimal("100"), TransactionType.adjustment, accountant.id)
        second = ledger.post_transaction(user.id, Decimal("-250"), TransactionType.invoice_deduction, accountant.id)
        db.commit()

        assert second.balance_before == first.balance_after == Decimal("100.00")
        assert second.balance_after == Decimal("-150.00")

    def test_negative_balance_is_allowed(self, db, accountant) -> None:
        user = make_user(db)
        LedgerService(db).post_transaction(user.id, Decimal("-10"), TransactionType.invoice_deduction, accountant.id)
        db.commit()
        db.refresh(user)

        assert user.saldo == Decimal("-10.00")

    def test_zero_amount_is_rejected(self, db, accountant) -> None:
        user = make_user(db)
        with pytest.raises(ValidationError):
            LedgerService(db).post_transaction(user.id, Decimal("0.00"), TransactionType.adjustment, accountant.id)

    def test_unknown_user(self, db, accountant) -> None:
        with pytest.raises(NotFoundError):
            LedgerService(db).post_transaction("missing", Decimal("5"), TransactionType.adjustment, accountant.id)

    def test_loaded_user_sees_new_saldo(self, db, accountant) -> None:
        user = make_user(db)
        assert user.saldo == Decimal("0")

        LedgerService(db).post_transaction(user.id, Decimal("42.10"), TransactionType.adjustment, accountant.id)
        db.commit()

        assert user.saldo == Decimal("42.10")


class TestAdjustSaldo:
    def test_adjustment_is_logged_and_notified(self, db, accountant) -> None:
        user = make_user(db)

        entry = LedgerService(db).adjust_saldo(user.id, Decimal("-30.50"), "Zwrot zaliczki", accountant)

        assert entry.transaction_type == TransactionType.adjustment
        assert entry.created_by == accountant.id
        notification = db.query(Notification).filter(Notification.user_id == user.id).one()
        assert notification.type == NotificationType.saldo_adjusted
        assert "decreased by 30.50 PLN" in notification.message

    @pytest.mark.parametrize("notes", ["abc", "x" * 501, "    "])
    def test_notes_length_is_enforced(self, db, accountant, notes) -> None:
        user = make_user(db)
        with pytest.raises(ValidationError):
            LedgerService(db).adjust_saldo(user.id, Decimal("10"), notes, accountant)
        assert db.query(SaldoTransaction).count() == 0

    def test_disabled_preference_suppresses_notification(self, db, accountant) -> None:
        user = make_user(db)
        user.notification_saldo_adjusted = False
        db.commit()

        LedgerService(db).adjust_saldo(user.id, Decimal("10"), "Premia roczna", accountant)

        assert db.query(Notification).filter(Notification.user_id == user.id).count() == 0


class TestReplay:
    def test_replay_balance(self) -> None:
        assert replay_balance([Decimal("10.10"), Decimal("-0.10"), "5"]) == Decimal("15.00")
        assert replay_balance([], initial=Decimal("3")) == Decimal("3.00")

    def test_replay_reproduces_cached_saldo(self, db, accountant) -> None:
        user = make_user(db)
        ledger = LedgerService(db)
        for amount in ("100.00", "-33.33", "0.01", "-250.00", "12.34"):
            ledger.post_transaction(user.id, Decimal(amount), TransactionType.adjustment, accountant.id)
        db.commit()

        assert ledger.replay_user(user.id) == ledger.get_saldo(user.id) == Decimal("-170.98")
        report = ledger.reconcile_user(user.id)
        assert report["consistent"] is True
        assert report["drift"] == Decimal("0.00")

    def test_reconcile_reports_drift(self, db, accountant) -> None:
        user = make_user(db, saldo="20")
        user.saldo = Decimal("25.00")
        db.commit()

        report = LedgerService(db).reconcile_user(user.id)

        assert report["consistent"] is False
        assert report["drift"] == Decimal("5.00")


class TestReadSide:
    def test_history_is_newest_first_with_creator_name(self, db, accountant) -> None:
        user = make_user(db)
        ledger = LedgerService(db)
        ledger.adjust_saldo(user.id, Decimal("10"), "Pierwszy wpis", accountant)
        ledger.adjust_saldo(user.id, Decimal("20"), "Drugi wpis", accountant)

        rows, total = ledger.get_saldo_history(user, limit=10)

        assert total == 2
        assert {entry.amount for entry, _ in rows} == {Decimal("10.00"), Decimal("20.00")}
        assert all(name == accountant.name for _, name in rows)

    def test_user_cannot_read_someone_elses_history(self, db) -> None:
        user = make_user(db)
        other = make_user(db)
        with pytest.raises(ForbiddenError):
            LedgerService(db).get_saldo_history(user, user_id=other.id)

    def test_accountant_can_read_any_history(self, db, accountant) -> None:
        user = make_user(db, saldo="5")
        rows, total = LedgerService(db).get_saldo_history(accountant, user_id=user.id)
        assert total == 1

    @pytest.mark.parametrize("limit", [0, 101])
    def test_history_limit_bounds(self, db, limit) -> None:
        user = make_user(db)
        with pytest.raises(ValidationError):
            LedgerService(db).get_saldo_history(user, limit=limit)

    def test_stats_cover_regular_users_only(self, db, accountant) -> None:
        make_user(db, saldo="100")
        make_user(db, saldo="-40")
        make_user(db)
        make_user(db, UserRole.admin, saldo="1000")

        stats = LedgerService(db).get_saldo_stats()

        assert stats["total_users"] == 3
        assert stats["total_saldo"] == Decimal("60.00")
        assert stats["average_saldo"] == Decimal("20.00")
        assert (stats["positive_count"], stats["negative_count"], stats["zero_count"]) == (1, 1, 1)

    def test_exports(self, db, accountant) -> None:
        user = make_user(db, name="Zofia Nowak")
        LedgerService(db).adjust_saldo(user.id, Decimal("12.50"), "Korekta salda", accountant)

        history = LedgerService(db).export_saldo_history(user_id=user.id)
        users = LedgerService(db).export_all_users_saldo()

        assert history[0]["user_name"] == "Zofia Nowak"
        assert history[0]["transaction_type"] == "adjustment"
        assert history[0]["balance_after"] == Decimal("12.50")
        assert any(row["id"] == user.id and row["saldo"] == Decimal("12.50") for row in users)
