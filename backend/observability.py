"""
Observability
=============
Structured logging setup and the error-reporting capability injected into
the webhook pipeline.

Reporting is separate from logging: a reporter receives the exception plus
its context and decides where it goes (structlog by default, an external
error tracker in production, an in-memory list in tests).
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

from config import settings


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structlog JSON output for the whole process."""
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # Uncached: configure_logging runs again at app startup and must reach
        # loggers that were already used.
        cache_logger_on_first_use=False,
    )


configure_logging()


# =============================================================================
# ERROR REPORTING
# =============================================================================

class IErrorReporter(ABC):
    """Error reporting interface"""

    @abstractmethod
    def report(self, error: BaseException, **context: Any) -> None:
        pass


class StructlogErrorReporter(IErrorReporter):
    """
    Default reporter: one structured event per report, at the level named by
    the `severity` context key ("error" when absent). Pipeline errors add
    their own context.
    """

    def __init__(self):
        self._logger = structlog.get_logger(component="error_reporter")

    def report(self, error: BaseException, **context: Any) -> None:
        severity = context.pop("severity", "error")
        fields = {**getattr(error, "context", {}), **context}
        fields["error"] = str(error)
        fields["error_type"] = type(error).__name__
        getattr(self._logger, severity, self._logger.error)("error_reported", **fields)


class RecordingErrorReporter(IErrorReporter):
    """Keeps reported errors in memory"""

    def __init__(self):
        self.reports: list[tuple[BaseException, dict]] = []

    def report(self, error: BaseException, **context: Any) -> None:
        self.reports.append((error, context))

    def of_type(self, error_type: type) -> list[BaseException]:
        return [e for e, _ in self.reports if isinstance(e, error_type)]
