"""Structured logging configuration using structlog."""

import logging
import re
import sys

import structlog

# Event-dict keys whose values are pickup codes and must never reach the logs
_SECRET_KEYS = frozenset({"otp_code", "otp_submitted", "pickup_code"})

# Plain-text fragments like "otp=123456" or "pickup code: 123456"
_OTP_PATTERN = re.compile(r"((?:otp|pickup[_ ]code)\w*\W{1,3})\d{6}\b", re.IGNORECASE)

REDACTED = "<REDACTED>"


def redact_text(value: str) -> str:
    """Mask pickup codes embedded in a free-form string."""
    return _OTP_PATTERN.sub(rf"\1{REDACTED}", value)


class OtpRedactingFilter(logging.Filter):
    """Filter that redacts pickup codes from stdlib log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact pickup codes from log message."""
        if record.msg and isinstance(record.msg, str):
            record.msg = redact_text(record.msg)
        if record.args:
            record.args = tuple(
                redact_text(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def _redact_mapping(values: dict) -> dict:
    redacted = {}
    for key, value in values.items():
        if key in _SECRET_KEYS and value is not None:
            redacted[key] = REDACTED
        elif isinstance(value, str):
            redacted[key] = redact_text(value)
        elif isinstance(value, dict):
            redacted[key] = _redact_mapping(value)
        else:
            redacted[key] = value
    return redacted


def _redact_secrets(
    logger: logging.Logger, method_name: str, event_dict: dict
) -> dict:
    """Structlog processor to redact pickup codes from event dictionaries."""
    return _redact_mapping(event_dict)


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    otp_filter = OtpRedactingFilter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    root_logger.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, log_level.upper()))
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(otp_filter)
    root_logger.addHandler(handler)

    # SQL echo in DEBUG prints bound parameters, including otp_code
    for logger_name in ("sqlalchemy.engine", "asyncpg"):
        logging.getLogger(logger_name).addFilter(otp_filter)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
