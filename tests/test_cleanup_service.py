"""Daily cleanup jobs."""
import asyncio
from datetime import datetime, timedelta

import pytest

from mobifaktura.models import LoginAttempt, LoginLog, Notification, NotificationType, UserSession
from mobifaktura.services import cleanup_service
from mobifaktura.services.cleanup_service import (
    audit_orphaned_files,
    cleanup_scheduler,
    clean_expired_sessions,
    clean_old_login_attempts,
    clean_old_login_logs,
    clean_old_notifications,
    run_daily_cleanup,
    seconds_until_next_run,
)
from mobifaktura.utils.dates import utcnow

from tests.test_invoice_service import submit


class TestJobs:
    def test_old_login_logs_are_removed(self, db) -> None:
        db.add_all([
            LoginLog(email="a@example.com", ip_address="1.1.1.1", success=True, created_at=utcnow() - timedelta(days=31)),
            LoginLog(email="b@example.com", ip_address="1.1.1.1", success=False),
        ])
        db.commit()

        assert clean_old_login_logs(db) == 1
        assert [log.email for log in db.query(LoginLog)] == ["b@example.com"]

    def test_old_login_attempts_are_removed(self, db) -> None:
        stale = utcnow() - timedelta(days=40)
        db.add_all([
            LoginAttempt(identifier="old@example.com", attempt_count=1, updated_at=stale),
            LoginAttempt(identifier="new@example.com", attempt_count=1),
        ])
        db.commit()

        assert clean_old_login_attempts(db) == 1

    def test_expired_sessions_are_removed(self, db, employee) -> None:
        db.add_all([
            UserSession(user_id=employee.id, expires_at=utcnow() - timedelta(minutes=1)),
            UserSession(user_id=employee.id, expires_at=utcnow() + timedelta(days=1)),
        ])
        db.commit()

        assert clean_expired_sessions(db) == 1
        assert db.query(UserSession).count() == 1

    def test_notifications_older_than_two_days(self, db, employee) -> None:
        db.add_all([
            Notification(user_id=employee.id, type=NotificationType.system_message, title="Stare", message="x",
                         created_at=utcnow() - timedelta(days=3)),
            Notification(user_id=employee.id, type=NotificationType.system_message, title="Nowe", message="x"),
        ])
        db.commit()

        assert clean_old_notifications(db) == 1
        assert [n.title for n in db.query(Notification)] == ["Nowe"]

    def test_orphaned_files_are_only_counted(self, db, employee, company, storage) -> None:
        submit(db, employee, company, image_key="u/1.jpg")
        storage.upload("u/1.jpg", b"x", "image/jpeg")
        storage.upload("u/2.jpg", b"x", "image/jpeg")

        assert audit_orphaned_files(db, storage) == 1
        assert set(storage.objects) == {"u/1.jpg", "u/2.jpg"}


class TestRunDailyCleanup:
    def test_reports_every_job(self, db, storage) -> None:
        results = run_daily_cleanup(db, storage)
        assert results == {
            "login_logs": 0,
            "login_attempts": 0,
            "expired_sessions": 0,
            "notifications": 0,
            "orphaned_files": 0,
        }

    def test_failing_job_does_not_stop_others(self, db) -> None:
        class BrokenStorage:
            def list_keys(self, prefix: str = ""):
                raise RuntimeError("storage down")

        results = run_daily_cleanup(db, BrokenStorage())

        assert results["orphaned_files"] is None
        assert results["notifications"] == 0


class TestSchedule:
    def test_later_today(self) -> None:
        assert seconds_until_next_run(datetime(2026, 3, 1, 0, 30), 1) == 30 * 60

    def test_tomorrow(self) -> None:
        assert seconds_until_next_run(datetime(2026, 3, 1, 1, 0), 1) == 24 * 3600

    def test_failed_run_does_not_stop_scheduler(self, monkeypatch) -> None:
        class StopLoop(Exception):
            pass

        runs = []
        delays = iter([0, 0])

        def failing_run() -> None:
            runs.append(len(runs) + 1)
            raise RuntimeError("database unavailable")

        def next_delay(now, hour) -> float:
            delay = next(delays, None)
            if delay is None:
                raise StopLoop()
            return delay

        monkeypatch.setattr(cleanup_service, "_run_once", failing_run)
        monkeypatch.setattr(cleanup_service, "seconds_until_next_run", next_delay)

        with pytest.raises(StopLoop):
            asyncio.run(cleanup_scheduler())

        assert runs == [1, 2]
