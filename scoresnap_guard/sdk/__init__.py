"""
SDK for scoresnap-guard.

Provides the rate-limited scoreboard analysis client and its collaborators.
"""

from .client import InferenceClient
from .credentials import InMemoryCredentialStore
from .imaging import PillowImagePreprocessor
from .transport import HttpxTransport

__all__ = [
    "InferenceClient",
    "InMemoryCredentialStore",
    "PillowImagePreprocessor",
    "HttpxTransport",
]
