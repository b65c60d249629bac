"""
Credential collaborator.

Secure storage mechanics live outside this package; the inference client
only needs set/get/clear with format validation.
"""

import os
import threading
from typing import Optional, Protocol

from scoresnap_guard.core.errors import CredentialError, CredentialErrorKind
from scoresnap_guard.core.security import get_logger, sanitize_api_key, validate_api_key

logger = get_logger(__name__)

API_KEY_ENV_VAR = "SCORESNAP_API_KEY"


class CredentialStore(Protocol):
    """Holds the remote service API key."""

    def set(self, secret: str) -> None: ...

    def get(self) -> str: ...

    def clear(self) -> None: ...


class InMemoryCredentialStore:
    """Keeps the API key in process memory only."""

    def __init__(self, secret: Optional[str] = None):
        self._secret: Optional[str] = None
        self._lock = threading.Lock()
        if secret is not None:
            self.set(secret)

    @classmethod
    def from_env(cls, env_var: str = API_KEY_ENV_VAR) -> "InMemoryCredentialStore":
        """Seed the store from an environment variable if it is set.

        Raises:
            CredentialError: If the variable is set but malformed
        """
        return cls(os.environ.get(env_var) or None)

    def set(self, secret: str) -> None:
        """Store a key after trimming and format validation.

        Raises:
            CredentialError: INVALID_FORMAT if the key is malformed
        """
        if not isinstance(secret, str):
            raise CredentialError(CredentialErrorKind.INVALID_FORMAT, "API key must be a string")
        sanitized = sanitize_api_key(secret)
        problem = validate_api_key(sanitized)
        if problem is not None:
            logger.warning("Rejected API key: %s", problem.value)
            raise CredentialError(CredentialErrorKind.INVALID_FORMAT, problem.value)
        with self._lock:
            self._secret = sanitized
        logger.info("API key stored")

    def get(self) -> str:
        """Return the stored key.

        Raises:
            CredentialError: NOT_FOUND if no key is stored
        """
        with self._lock:
            secret = self._secret
        if secret is None:
            raise CredentialError(CredentialErrorKind.NOT_FOUND)
        return secret

    def clear(self) -> None:
        with self._lock:
            self._secret = None
        logger.info("API key cleared")
