"""
Credential format checks and secure logging.

API keys must never appear in log output or error messages. The
RedactingFilter masks anything that looks like a credential before a
record is emitted.
"""

import logging
import re
from enum import Enum
from typing import Any, Optional

API_KEY_PREFIX = "sk-ant-api03-"
API_KEY_MIN_LENGTH = 40
API_KEY_MAX_LENGTH = 100

_API_KEY_PATTERN = re.compile(r"^sk-ant-api03-[A-Za-z0-9_-]+$")

_REDACTIONS = (
    (re.compile(r"sk-ant-api[0-9A-Za-z_-]+"), "[API_KEY]"),
    (re.compile(r"Bearer [A-Za-z0-9._-]+"), "[SENSITIVE_DATA]"),
    (re.compile(r"key=[A-Za-z0-9._-]+"), "[SENSITIVE_DATA]"),
    (re.compile(r"token=[A-Za-z0-9._-]+"), "[SENSITIVE_DATA]"),
)


class KeyValidationError(Enum):
    """Reasons an API key fails the format check."""
    EMPTY = "API key cannot be empty"
    INVALID_LENGTH = "API key length is invalid"
    INVALID_FORMAT = "API key format is invalid"


def sanitize_api_key(api_key: str) -> str:
    """Strip surrounding whitespace and newlines from a pasted key."""
    return api_key.strip()


def validate_api_key(api_key: Optional[str]) -> Optional[KeyValidationError]:
    """Check an API key against the expected format.

    Returns:
        None if the key is well formed, otherwise the reason it is not.
    """
    if api_key is None or not api_key.strip():
        return KeyValidationError.EMPTY
    if not API_KEY_MIN_LENGTH <= len(api_key) <= API_KEY_MAX_LENGTH:
        return KeyValidationError.INVALID_LENGTH
    if not _API_KEY_PATTERN.match(api_key):
        return KeyValidationError.INVALID_FORMAT
    return None


def is_valid_api_key(api_key: Optional[str]) -> bool:
    return validate_api_key(api_key) is None


def redact(message: str) -> str:
    """Mask credentials and bearer tokens inside free text."""
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def _redact_arg(value: Any) -> Any:
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, BaseException):
        return redact(str(value))
    return value


class RedactingFilter(logging.Filter):
    """Logging filter that scrubs credentials from messages and arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, dict):
            record.args = {k: _redact_arg(v) for k, v in record.args.items()}
        elif record.args:
            record.args = tuple(_redact_arg(arg) for arg in record.args)
        return True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger with redaction attached at the source.

    Logger filters are not inherited by children, so every module logger
    carries its own RedactingFilter.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, RedactingFilter) for f in logger.filters):
        logger.addFilter(RedactingFilter())
    return logger


def install_redaction(logger: Optional[logging.Logger] = None) -> None:
    """Attach a RedactingFilter to every handler of ``logger`` (root by default).

    Covers records from third-party loggers such as httpx.
    """
    logger = logger or logging.getLogger()
    for handler in logger.handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())
