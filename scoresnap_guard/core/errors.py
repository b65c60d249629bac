"""
Error taxonomy for scoreboard analysis.

Every failure surfaced by the inference client is a single exception type
tagged with an ErrorKind, carrying an optional detail message and HTTP status.
"""

from enum import Enum
from typing import Optional

from .security import redact


class ErrorKind(Enum):
    """Kinds of analysis failure."""
    NO_CREDENTIAL = "no_credential"
    INVALID_CREDENTIAL_FORMAT = "invalid_credential_format"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    NETWORK_FAILURE = "network_failure"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    JSON_PARSING_FAILED = "json_parsing_failed"
    IMAGE_PROCESSING_FAILED = "image_processing_failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"

    @property
    def retryable(self) -> bool:
        """Whether the transport layer may try the request again."""
        return self in (ErrorKind.NETWORK_FAILURE, ErrorKind.SERVER_ERROR)


_DESCRIPTIONS = {
    ErrorKind.NO_CREDENTIAL: "No API key configured",
    ErrorKind.INVALID_CREDENTIAL_FORMAT: "Invalid API key format",
    ErrorKind.RATE_LIMIT_EXCEEDED: "API rate limit exceeded",
    ErrorKind.NETWORK_FAILURE: "Network request failed",
    ErrorKind.SERVER_ERROR: "Server error occurred",
    ErrorKind.CLIENT_ERROR: "Request rejected by server",
    ErrorKind.JSON_PARSING_FAILED: "Failed to parse JSON response",
    ErrorKind.IMAGE_PROCESSING_FAILED: "Failed to process image",
    ErrorKind.CANCELLED: "Analysis was cancelled",
    ErrorKind.TIMEOUT: "Analysis timed out",
}


class InferenceError(Exception):
    """Raised when scoreboard analysis fails.

    The message is always redacted so that an API key echoed back by a
    collaborator never reaches logs or the caller.
    """

    def __init__(
        self,
        kind: ErrorKind,
        detail: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        self.kind = kind
        self.detail = redact(detail) if detail else None
        self.status_code = status_code
        super().__init__(self._format())

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def _format(self) -> str:
        message = _DESCRIPTIONS[self.kind]
        if self.status_code is not None:
            message = f"{message} (HTTP {self.status_code})"
        if self.detail:
            message = f"{message}: {self.detail}"
        return message

    def __repr__(self) -> str:
        return (
            f"InferenceError(kind={self.kind.name}, "
            f"status_code={self.status_code!r}, detail={self.detail!r})"
        )


class CredentialErrorKind(Enum):
    """Failures reported by a credential store."""
    INVALID_FORMAT = "invalid_format"
    NOT_FOUND = "not_found"


class CredentialError(Exception):
    """Raised by credential stores on malformed input or a missing key."""

    def __init__(self, kind: CredentialErrorKind, detail: Optional[str] = None):
        self.kind = kind
        self.detail = redact(detail) if detail else None
        message = "API key not found" if kind == CredentialErrorKind.NOT_FOUND else "API key format is invalid"
        if self.detail:
            message = f"{message}: {self.detail}"
        super().__init__(message)
