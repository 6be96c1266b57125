"""
Tests for the overdue scanner.

These tests verify:
1. A scan reports exactly the open loans past their due date
2. A scan never changes loans or books
3. Overlapping triggers are skipped
4. Failures are logged and never raised into the scheduler
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from library_circulation.database import Book, CirculationRepository, Loan, LoanRepository
from library_circulation.overdue import (
    SCAN_JOB_ID,
    LoggingNotifier,
    OverdueScanner,
    ScannerState,
)

NOW = datetime(2024, 9, 1, 12, 0)


class RecordingNotifier:
    """Keeps every batch of overdue loans it is given."""

    def __init__(self):
        self.calls = []

    def notify(self, loans, scanned_at):
        self.calls.append((list(loans), scanned_at))


class BlockingNotifier:
    """Holds the scan open until released."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def notify(self, loans, scanned_at):
        self.entered.set()
        self.release.wait(timeout=10)


class FailingNotifier:
    def notify(self, loans, scanned_at):
        raise RuntimeError("SMTP down")


def _lend(db_manager, book_id, member_id, borrowed):
    with db_manager.session_scope() as s:
        CirculationRepository(s).borrow_book(book_id, member_id, now=borrowed)


@pytest.fixture
def overdue_ledger(db_manager, seeded):
    """Book 1 is 10 days overdue, book 2 is 1 day overdue, book 3 is not yet due."""
    _lend(db_manager, 1, 1, NOW - timedelta(days=24))
    _lend(db_manager, 2, 2, NOW - timedelta(days=15))
    _lend(db_manager, 3, 3, NOW - timedelta(days=2))
    return db_manager


class TestOverdueScan:
    """Test a single scan."""

    def test_scan_reports_overdue_loans(self, overdue_ledger):
        notifier = RecordingNotifier()
        scanner = OverdueScanner(notifier=notifier)

        loans = scanner.scan(now=NOW)

        assert [loan.book_id for loan in loans] == [1, 2]
        assert len(notifier.calls) == 1
        reported, scanned_at = notifier.calls[0]
        assert [loan.book_id for loan in reported] == [1, 2]
        assert scanned_at == NOW
        assert scanner.last_scan_at == NOW
        assert scanner.last_overdue_count == 2
        assert scanner.state == ScannerState.IDLE

    def test_scan_with_nothing_overdue(self, overdue_ledger):
        notifier = RecordingNotifier()
        loans = OverdueScanner(notifier=notifier).scan(now=NOW - timedelta(days=30))
        assert loans == []
        assert notifier.calls[0][0] == []

    def test_scan_is_read_only(self, overdue_ledger):
        def snapshot():
            with overdue_ledger.session_scope() as s:
                loans = s.execute(
                    select(Loan.id, Loan.return_date, Loan.due_date).order_by(Loan.id)
                ).all()
                flags = s.execute(select(Book.id, Book.available).order_by(Book.id)).all()
                return loans, flags

        before = snapshot()
        OverdueScanner(notifier=RecordingNotifier()).scan(now=NOW)
        assert snapshot() == before

    def test_returned_loans_are_not_reported(self, overdue_ledger):
        with overdue_ledger.session_scope() as s:
            CirculationRepository(s).return_book(1, now=NOW - timedelta(days=1))

        loans = OverdueScanner(notifier=RecordingNotifier()).scan(now=NOW)
        assert [loan.book_id for loan in loans] == [2]

    def test_logging_notifier_output(self, overdue_ledger, caplog):
        with caplog.at_level(logging.INFO, logger="library_circulation.overdue"):
            OverdueScanner(notifier=LoggingNotifier()).scan(now=NOW)

        assert "Overdue scan found 2 overdue loan(s)" in caplog.text
        assert '"Book 01" by Author A' in caplog.text
        assert "member1@example.com" in caplog.text
        assert "(10 days overdue)" in caplog.text


class TestScanFailures:
    """Failures are contained within the scan."""

    def test_database_failure_is_logged(self, caplog):
        @contextmanager
        def broken_session():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))
            yield  # pragma: no cover

        scanner = OverdueScanner(notifier=RecordingNotifier(), session_factory=broken_session)

        with caplog.at_level(logging.ERROR):
            assert scanner.scan(now=NOW) is None

        assert "Overdue scan failed" in caplog.text
        assert scanner.last_scan_at is None
        assert scanner.state == ScannerState.IDLE

    def test_notifier_failure_is_logged(self, overdue_ledger, caplog):
        scanner = OverdueScanner(notifier=FailingNotifier())

        with caplog.at_level(logging.ERROR):
            assert scanner.scan(now=NOW) is None

        assert "Overdue notifier failed" in caplog.text
        assert scanner.state == ScannerState.IDLE

    def test_unexpected_failure_is_not_blamed_on_notifier(
        self, overdue_ledger, caplog, monkeypatch
    ):
        def misbehaving(self, now=None):
            raise TypeError("can't compare offset-naive and offset-aware datetimes")

        monkeypatch.setattr(LoanRepository, "find_overdue", misbehaving)
        notifier = RecordingNotifier()
        scanner = OverdueScanner(notifier=notifier)

        with caplog.at_level(logging.ERROR):
            assert scanner.scan(now=NOW) is None

        assert "Overdue scan failed unexpectedly" in caplog.text
        assert "Overdue notifier failed" not in caplog.text
        assert notifier.calls == []

        monkeypatch.undo()
        assert len(scanner.scan(now=NOW)) == 2

    def test_overlapping_scan_is_skipped(self, overdue_ledger, caplog):
        notifier = BlockingNotifier()
        scanner = OverdueScanner(notifier=notifier)
        first = threading.Thread(target=scanner.scan, kwargs={"now": NOW})
        first.start()
        try:
            assert notifier.entered.wait(timeout=10)
            assert scanner.state == ScannerState.SCANNING

            with caplog.at_level(logging.INFO, logger="library_circulation.overdue"):
                assert scanner.scan(now=NOW) is None
            assert "already in progress" in caplog.text
        finally:
            notifier.release.set()
            first.join(timeout=10)

        assert scanner.last_overdue_count == 2


class TestScannerScheduling:
    """Test the background schedule."""

    def test_start_and_stop(self):
        scanner = OverdueScanner(notifier=RecordingNotifier())
        scanner.start(interval_minutes=60)
        try:
            assert scanner.running
            job = scanner._scheduler.get_job(SCAN_JOB_ID)
            assert job is not None
            assert job.trigger.interval == timedelta(minutes=60)
            assert job.max_instances == 1
            assert job.coalesce is True

            scanner.start(interval_minutes=5)
            assert scanner._scheduler.get_job(SCAN_JOB_ID).trigger.interval == timedelta(minutes=60)
        finally:
            scanner.stop()

        assert not scanner.running

    def test_stop_without_start(self):
        OverdueScanner().stop()

    def test_scan_with_default_clock_leaves_loans_open(self, overdue_ledger):
        scanner = OverdueScanner(notifier=RecordingNotifier())
        scanner.scan()
        with overdue_ledger.session_scope() as s:
            open_loans = s.execute(
                select(func.count()).select_from(Loan).where(Loan.return_date.is_(None))
            ).scalar()
        assert open_loans == 3
