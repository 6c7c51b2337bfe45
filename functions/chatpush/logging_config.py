"""Structured logging for the chat notification functions.

Emits one JSON object per line on stdout so Cloud Logging picks up
``severity`` and indexes the remaining fields as ``jsonPayload``.
"""
import logging
import json
import sys
from typing import Any, Dict, Optional


class JSONFormatter(logging.Formatter):
    """Format log records as Cloud Logging compatible JSON."""

    def __init__(self, component: str):
        super().__init__()
        self.component = component

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "component": self.component,
        }

        if hasattr(record, "extra"):
            log_obj.update(record.extra)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        # Firestore ids and error objects are not always JSON native
        return json.dumps(log_obj, default=str)


class CloudFunctionLogger:
    """Structured logger for Google Cloud Functions.

    Keyword arguments become top-level JSON fields. ``bind`` returns a child
    logger that repeats a fixed set of fields on every line, which keeps the
    per-recipient logs of one fan-out greppable by ``event_id``.

    Example:
        logger = CloudFunctionLogger("chat-notifier")
        log = logger.bind(event_id="m1", chat_id="c1")
        log.info("Recipient suppressed", recipient_id="u2")
    """

    def __init__(self, component: str, context: Optional[Dict[str, Any]] = None):
        self.component = component
        self.context = dict(context or {})
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        """Configure logger with JSON formatter for Cloud Logging."""
        logger = logging.getLogger(self.component)
        logger.setLevel(logging.INFO)
        logger.propagate = False

        # Repeated construction must not stack handlers
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JSONFormatter(self.component))
            logger.addHandler(handler)

        return logger

    def bind(self, **kwargs: Any) -> "CloudFunctionLogger":
        """Return a logger that adds ``kwargs`` to every record."""
        context = dict(self.context)
        context.update(kwargs)
        return CloudFunctionLogger(self.component, context)

    def _log(self, level: int, message: str, exc_info=None, **kwargs: Any) -> None:
        record = self.logger.makeRecord(
            self.component, level, "", 0, message, (), exc_info
        )
        fields = dict(self.context)
        fields.update(kwargs)
        record.extra = fields
        self.logger.handle(record)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log at ERROR with the active exception's traceback attached."""
        self._log(logging.ERROR, message, exc_info=sys.exc_info(), **kwargs)
