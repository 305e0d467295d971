"""
Logging configuration for Manga Sync Service.
Provides both console logging and database logging.
"""

import logging
import os
import sys
from typing import Any, Optional

import structlog
from structlog.types import Processor

from manga_sync.db.models import ImportLog

NOISY_LOGGERS = ("urllib3", "requests", "apscheduler", "waitress")


def get_log_level() -> str:
    """Get log level from environment."""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging(level: Optional[str] = None) -> None:
    """Configure structured logging for the application."""

    # Shared processors for both console and structlog
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, (level or get_log_level()).upper()))

    # Reduce noise from third-party libraries
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class DatabaseLogHandler(logging.Handler):
    """
    Log handler that writes records to the import_log table.
    Used by the /api/logs endpoint.
    """

    def __init__(self, database, max_logs: int = 1000):
        super().__init__()
        self.database = database
        self.max_logs = max_logs
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        """Write log record to database."""
        # structlog passes the event dict through record.msg
        event = record.msg if isinstance(record.msg, dict) else None
        details = None
        run_id = getattr(record, "run_id", None)
        if event is not None:
            message = str(event.get("event", ""))
            details = {
                key: str(value) for key, value in event.items()
                if key not in ("event", "level", "timestamp", "logger")
            } or None
            run_id = run_id or event.get("run_id")
        else:
            message = self.format(record)

        try:
            with self.database.session() as session:
                session.add(ImportLog(
                    level=record.levelname,
                    message=message,
                    details=details,
                    run_id=run_id,
                ))
                session.flush()

                count = session.query(ImportLog).count()
                if count > self.max_logs:
                    oldest = session.query(ImportLog)\
                        .order_by(ImportLog.created_at.asc(), ImportLog.id.asc())\
                        .limit(count - self.max_logs)\
                        .all()
                    for log in oldest:
                        session.delete(log)
        except Exception:
            self.handleError(record)


def init_db_logging(database, level: int = logging.INFO) -> DatabaseLogHandler:
    """Attach a database handler to the root logger."""
    handler = DatabaseLogHandler(database)
    handler.setLevel(level)
    logging.getLogger().addHandler(handler)
    return handler


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


class ImportLogger:
    """
    Logger for import runs.
    Every line carries the run id so logs can be grouped per run.
    """

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        self.logger = get_logger("importer")
        if run_id:
            self.logger = self.logger.bind(run_id=run_id)

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.logger.error(message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an exception with traceback."""
        self.logger.error(message, exc_info=True, **kwargs)
