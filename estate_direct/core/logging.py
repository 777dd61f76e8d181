import logging
from contextvars import ContextVar
from logging.config import dictConfig
from typing import Literal, Optional

LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]

current_request_id: ContextVar[Optional[str]] = ContextVar("current_request_id", default=None)

# Third-party loggers that are chatty at INFO.
QUIET_LOGGERS = ("sqlalchemy.engine", "stripe", "python_http_client")


class RequestIdFilter(logging.Filter):
    """Stamp every record with the id of the HTTP request being served, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = current_request_id.get() or "-"
        return True


def configure_logging(level: LogLevel = "INFO", log_format: str = "json") -> None:
    use_json = log_format.lower() == "json"
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_id": {"()": RequestIdFilter}},
            "formatters": {
                "plain": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(request_id)s | %(message)s",
                },
                "json": {
                    "()": "pythonjsonlogger.json.JsonFormatter",
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(request_id)s %(message)s",
                    "rename_fields": {"levelname": "level", "asctime": "ts"},
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "filters": ["request_id"],
                    "formatter": "json" if use_json else "plain",
                }
            },
            "root": {"handlers": ["console"], "level": level.upper()},
        }
    )

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = []
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.getLogger().level))
