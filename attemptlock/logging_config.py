"""
Logging configuration for attemptlock.

Provides structured JSON logging and an audit logger for lock decisions
and supervisor unlocks. Session tokens, client fingerprints and lock
secrets are never written to the log.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import IO, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One JSON object per line, suitable for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for lock and unlock events.

    Subscribed to the event dispatcher as the activity log, and called
    directly by the gate and the unlock service.
    """

    def __init__(self, name: str = "attemptlock.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def lock_created(self, component: str, attempt_id: int, quiz_id: int) -> None:
        self._log(
            logging.INFO,
            "LOCK_CREATED",
            component=component,
            attempt_id=attempt_id,
            quiz_id=quiz_id,
            message=f"Attempt {attempt_id} bound to its first client"
        )

    def attempt_blocked(
        self,
        component: str,
        attempt_id: int,
        quiz_id: int,
        user_id: Optional[int] = None
    ) -> None:
        """Log a blocked resume from a different client."""
        self._log(
            logging.WARNING,
            "ATTEMPT_BLOCKED",
            component=component,
            attempt_id=attempt_id,
            quiz_id=quiz_id,
            user_id=user_id,
            message=f"Attempt {attempt_id} opened from another client"
        )

    def malformed_lock(self, attempt_id: Optional[int], reason: str) -> None:
        """Log a stored lock value that failed to parse (data integrity)."""
        self._log(
            logging.WARNING,
            "MALFORMED_LOCK",
            attempt_id=attempt_id,
            reason=reason,
            message=f"Stored lock for attempt {attempt_id} is malformed: {reason}"
        )

    def attempt_unlocked(
        self,
        component: str,
        attempt_id: int,
        quiz_id: int,
        unlocked_by: int,
        had_lock: bool
    ) -> None:
        self._log(
            logging.INFO,
            "ATTEMPT_UNLOCKED",
            component=component,
            attempt_id=attempt_id,
            quiz_id=quiz_id,
            unlocked_by=unlocked_by,
            had_lock=had_lock,
            message=f"Attempt {attempt_id} unlocked by user {unlocked_by}"
        )

    def unlock_skipped(self, component: str, attempt_id: int, reason: str) -> None:
        self._log(
            logging.INFO,
            "UNLOCK_SKIPPED",
            component=component,
            attempt_id=attempt_id,
            reason=reason,
            message=f"Unlock of attempt {attempt_id} skipped: {reason}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
    stream: Optional[IO[str]] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
        stream: Console stream, stdout by default
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


# Global audit logger instance
audit_log = AuditLogger()
