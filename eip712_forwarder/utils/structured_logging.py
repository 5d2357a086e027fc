"""
Structured JSON logging for relay deployments.

Enables correlation IDs, structured validation events, and queryable logs.
"""

import json
import logging
import re
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

# Per-context correlation ID storage
_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


class CredentialRedactionFilter(logging.Filter):
    """
    Redacts private keys from log records.

    Only 32-byte hex values labelled as keys are redacted. Digests, type
    hashes and domain separators have the same shape as a private key and are
    routinely logged, so an unlabelled 0x + 64 hex value passes through.

    Usage:
        >>> handler = logging.StreamHandler()
        >>> handler.addFilter(CredentialRedactionFilter())
        >>> logger.addHandler(handler)
    """

    PRIVATE_KEY_PATTERN = re.compile(
        r'((?:private[_ ]?key|secret|key)["\']?\s*[:=]\s*["\']?)(?:0x)?[0-9a-fA-F]{64}\b',
        re.IGNORECASE
    )
    MNEMONIC_PATTERN = re.compile(
        r'((?:mnemonic|seed)["\']?\s*[:=]\s*["\']?)(?:[a-z]+\s+){11,23}[a-z]+',
        re.IGNORECASE
    )

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Redact credentials from log record.

        Returns:
            Always True (records are sanitized, never dropped)
        """
        if record.msg:
            record.msg = self.redact(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self.redact(str(v)) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self.redact(str(arg)) for arg in record.args)

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            record.extra_fields = {
                k: self.redact(v) if isinstance(v, str) else v
                for k, v in extra_fields.items()
            }

        if record.exc_text:
            record.exc_text = self.redact(record.exc_text)

        return True

    def redact(self, text: str) -> str:
        """Replace labelled credential values, keeping the label."""
        if not text:
            return text
        text = self.PRIVATE_KEY_PATTERN.sub(r'\1[REDACTED]', text)
        text = self.MNEMONIC_PATTERN.sub(r'\1[REDACTED]', text)
        return text


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs as JSON for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = _correlation_id.get()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        return json.dumps(log_data, default=str)


class StructuredLogger:
    """
    Structured logger wrapper with correlation ID support.

    Every call logs an event name plus keyword fields.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, event: str, message: Optional[str] = None, **fields) -> None:
        if not self.logger.isEnabledFor(level):
            return
        log_message = f"{event}: {message}" if message else event

        extra_fields = {"event": event}
        extra_fields.update(fields)

        self.logger.log(level, log_message, extra={'extra_fields': extra_fields})

    def debug(self, event: str, message: Optional[str] = None, **fields) -> None:
        self._log(logging.DEBUG, event, message, **fields)

    def info(self, event: str, message: Optional[str] = None, **fields) -> None:
        """
        Log info event.

        Example:
            >>> logger.info(
            ...     "request_accepted",
            ...     signer="0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826",
            ...     nonce=0,
            ...     digest="0xbe609aee...",
            ... )

        Output (JSON):
            {
              "timestamp": "2026-01-12T09:14:03.120Z",
              "level": "INFO",
              "logger": "eip712_forwarder.relay.validator",
              "message": "request_accepted",
              "correlation_id": "req_5f1c0e2a9b3d",
              "event": "request_accepted",
              "signer": "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826",
              "nonce": 0,
              "digest": "0xbe609aee..."
            }
        """
        self._log(logging.INFO, event, message, **fields)

    def warning(self, event: str, message: Optional[str] = None, **fields) -> None:
        self._log(logging.WARNING, event, message, **fields)

    def error(self, event: str, message: Optional[str] = None, **fields) -> None:
        self._log(logging.ERROR, event, message, **fields)

    def exception(self, event: str, message: Optional[str] = None, **fields) -> None:
        """Log exception with traceback."""
        extra_fields = {"event": event}
        extra_fields.update(fields)
        self.logger.exception(
            f"{event}: {message}" if message else event,
            extra={'extra_fields': extra_fields}
        )


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """
    Set correlation ID for current context.

    Args:
        correlation_id: Correlation ID (generates one if None)

    Returns:
        The correlation ID set
    """
    if correlation_id is None:
        correlation_id = f"req_{uuid.uuid4().hex[:12]}"

    _correlation_id.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear correlation ID from current context."""
    _correlation_id.set(None)
