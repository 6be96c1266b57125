"""Logging and Logfire observability for the Library Circulation Service."""

import logging
import sys

import logfire

from .config import ServerConfig

logger = logging.getLogger(__name__)

# Circulation metrics
loan_events = logfire.metric_counter(
    "library.loans.events", description="Loan lifecycle events (borrow / return / rejected)"
)

overdue_loans = logfire.metric_gauge(
    "library.loans.overdue", description="Open loans past their due date at the last scan"
)


def record_loan_event(event_type: str, outcome: str = "ok") -> None:
    """Record a borrow or return attempt."""
    loan_events.add(1, {"event_type": event_type, "outcome": outcome})


def record_overdue_count(count: int) -> None:
    overdue_loans.set(count)


def configure_logging(config: ServerConfig) -> None:
    """
    Configure root logging once at process start.

    Logs go to stderr so the stdio MCP transport keeps stdout to itself.
    """
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def configure_logfire(config: ServerConfig) -> None:
    """Initialize Logfire with configuration."""
    if not config.logfire_enabled:
        logger.debug("Logfire disabled via configuration")
        logfire.configure(send_to_logfire=False, console=False)
        return

    logfire.configure(
        token=config.logfire_token,
        service_name=config.service_name,
        service_version=config.service_version,
        environment=config.environment,
        send_to_logfire="if-token-present",
        console=False,
    )
