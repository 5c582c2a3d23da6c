"""
Logging configuration for the Book Catalog Service.
Provides both console logging and database logging.
"""

import logging
import sys
import os
from typing import Optional, Any
import structlog
from structlog.types import Processor

_configured = False
_db_handler: Optional[logging.Handler] = None


def get_log_level() -> str:
    """Get log level from environment."""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structured logging for the application."""
    global _configured

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (log_level or get_log_level()).upper(), logging.INFO))

    if _configured:
        return

    # Shared processors for both console and structlog
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    # Configure structlog
    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("waitress").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    _configured = True


def _json_safe(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return str(value)


class DatabaseLogHandler(logging.Handler):
    """
    Log handler that writes logs to the database.
    Backs the /api/imports/logs endpoint.
    """

    def __init__(self, max_logs: int = 1000):
        super().__init__()
        self.max_logs = max_logs

    def _split_record(self, record: logging.LogRecord):
        # structlog hands the event dict through record.msg
        if isinstance(record.msg, dict):
            event = dict(record.msg)
            message = str(event.pop("event", ""))
            run_id = event.pop("import_run_id", None)
            for meta in ("level", "timestamp", "logger"):
                event.pop(meta, None)
            return message, _json_safe(event) or None, run_id
        return record.getMessage(), None, getattr(record, "import_run_id", None)

    def emit(self, record: logging.LogRecord) -> None:
        """Write log record to database."""
        from bookcatalog.db.database import get_db_session
        from bookcatalog.db.models import ImportLog

        try:
            message, details, run_id = self._split_record(record)
            with get_db_session() as session:
                session.add(ImportLog(
                    level=record.levelname,
                    message=message,
                    details=details,
                    import_run_id=run_id,
                ))
                session.flush()

                # Clean up old logs if we exceed max
                count = session.query(ImportLog).count()
                if count > self.max_logs:
                    oldest = session.query(ImportLog)\
                        .order_by(ImportLog.created_at.asc(), ImportLog.id.asc())\
                        .limit(count - self.max_logs)\
                        .all()
                    for log in oldest:
                        session.delete(log)

        except Exception:
            # Logging must never break the caller
            self.handleError(record)


def init_db_logging(max_logs: int = 1000) -> logging.Handler:
    """Attach the database log handler. Call after init_db()."""
    global _db_handler
    if _db_handler is None:
        _db_handler = DatabaseLogHandler(max_logs=max_logs)
        _db_handler.setLevel(logging.INFO)
        logging.getLogger().addHandler(_db_handler)
    return _db_handler


def remove_db_logging() -> None:
    global _db_handler
    if _db_handler is not None:
        logging.getLogger().removeHandler(_db_handler)
        _db_handler = None


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


class ImportLogger:
    """
    Logger for bulk import runs.
    Tags every event with the import run id.
    """

    def __init__(self, import_run_id: Optional[str] = None):
        self.logger = get_logger("import")
        self.import_run_id = import_run_id

    def _log(self, level: str, message: str, **kwargs: Any) -> None:
        log_method = getattr(self.logger, level.lower())

        if self.import_run_id:
            structlog.contextvars.bind_contextvars(import_run_id=self.import_run_id)
        try:
            log_method(message, **kwargs)
        finally:
            structlog.contextvars.unbind_contextvars("import_run_id")

    def info(self, message: str, **kwargs: Any) -> None:
        self._log("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log("ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log("DEBUG", message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an exception with traceback."""
        self._log("ERROR", message, exc_info=True, **kwargs)


# Initialize logging on module import
setup_logging()
