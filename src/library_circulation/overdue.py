"""
Overdue scanner for the Library Circulation Service.

A periodic, read-only sweep of the loan ledger. Every tick it collects the
open loans whose due date has passed and hands each one to an
``OverdueNotifier``. The default notifier only logs; a mail or SMS sender can
be plugged in without touching the scanner.

The scanner:

- never mutates loans or books
- never overlaps with itself (a tick that fires while a scan is running is skipped)
- never raises into the scheduler; failures are logged and the next tick retries
"""

import enum
import logging
import threading
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol

import logfire
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database.exceptions import RepositoryException
from .database.loan_repository import LoanRepository
from .database.session import session_scope
from .models.loan import LoanDetail, utc_now
from .observability import record_overdue_count

logger = logging.getLogger(__name__)

SCAN_JOB_ID = "overdue-scan"


class ScannerState(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class OverdueNotifier(Protocol):
    """Receives the overdue loans found by one scan."""

    def notify(self, loans: Sequence[LoanDetail], scanned_at: datetime) -> None: ...


class LoggingNotifier:
    """Logs one warning per overdue loan and a summary line."""

    def notify(self, loans: Sequence[LoanDetail], scanned_at: datetime) -> None:
        for loan in loans:
            days_overdue = (scanned_at - loan.due_date).days
            logger.warning(
                'Overdue: loan %s, "%s" by %s, borrowed by %s <%s>, due %s (%d days overdue)',
                loan.id,
                loan.book_title,
                loan.book_author,
                loan.member_name,
                loan.member_email,
                loan.due_date.isoformat(),
                days_overdue,
            )
        if loans:
            logger.info("Overdue scan found %d overdue loan(s)", len(loans))
        else:
            logger.info("Overdue scan found no overdue loans")


class OverdueScanner:
    """
    Finds overdue loans and reports them.

    Args:
        notifier: Where overdue loans are sent; defaults to ``LoggingNotifier``
        session_factory: Context manager factory yielding a session;
            defaults to the global ``session_scope``
    """

    def __init__(
        self,
        notifier: OverdueNotifier | None = None,
        session_factory: Callable[[], AbstractContextManager[Session]] | None = None,
    ):
        self.notifier = notifier or LoggingNotifier()
        self.session_factory = session_factory or session_scope
        self._lock = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None
        self.last_scan_at: datetime | None = None
        self.last_overdue_count: int | None = None

    @property
    def state(self) -> ScannerState:
        return ScannerState.SCANNING if self._lock.locked() else ScannerState.IDLE

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def scan(self, now: datetime | None = None) -> list[LoanDetail] | None:
        """
        Run one scan.

        Returns:
            The overdue loans found, or None if the scan was skipped because
            another one was in progress or the database could not be read
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Overdue scan already in progress, skipping this trigger")
            return None

        try:
            now = now or utc_now()
            with logfire.span("overdue scan"):
                with self.session_factory() as session:
                    loans = LoanRepository(session).find_overdue(now)
                try:
                    self.notifier.notify(loans, now)
                except Exception:
                    # A broken notifier must not take the scheduler thread down
                    logger.exception("Overdue notifier failed")
                    return None
                self.last_scan_at = now
                self.last_overdue_count = len(loans)
                record_overdue_count(len(loans))
                return loans
        except (SQLAlchemyError, RepositoryException):
            logger.exception("Overdue scan failed, will retry on the next tick")
            return None
        except Exception:
            logger.exception("Overdue scan failed unexpectedly")
            return None
        finally:
            self._lock.release()

    def start(self, interval_minutes: int) -> None:
        """Schedule ``scan`` every ``interval_minutes`` on a background thread."""
        if self.running:
            return

        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            self.scan,
            "interval",
            minutes=interval_minutes,
            id=SCAN_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Overdue scanner started, interval %d minute(s)", interval_minutes)

    def stop(self) -> None:
        """Shut the scheduler down. A scan in flight finishes first."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=True)
        self._scheduler = None
        logger.info("Overdue scanner stopped")
