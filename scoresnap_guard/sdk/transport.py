"""
Transport collaborator.

Sends a fully built request and returns the raw status and body. Status
interpretation and retries belong to the InferenceClient.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import httpx

from scoresnap_guard.core.errors import ErrorKind, InferenceError
from scoresnap_guard.core.security import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class InferenceRequest:
    """One HTTP request to the analysis endpoint.

    Headers are excluded from repr because they carry the API key.
    """
    url: str
    body: bytes = field(repr=False)
    headers: Dict[str, str] = field(default_factory=dict, repr=False)
    method: str = "POST"


@dataclass(frozen=True)
class TransportResponse:
    """Raw response from the transport."""
    status_code: int
    body: bytes = b""


class Transport(Protocol):
    """Sends requests to the remote analysis service.

    Implementations raise InferenceError with NETWORK_FAILURE on connection
    problems and TIMEOUT when ``timeout`` elapses.
    """

    async def send(self, request: InferenceRequest, timeout: float) -> TransportResponse: ...


class HttpxTransport:
    """Transport backed by an httpx.AsyncClient."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        """Initialize the transport.

        Args:
            client: Client to send through; one is created lazily if omitted
        """
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def send(self, request: InferenceRequest, timeout: float) -> TransportResponse:
        client = self._get_client()
        try:
            response = await client.request(
                request.method,
                request.url,
                content=request.body,
                headers=request.headers,
                timeout=httpx.Timeout(timeout)
            )
        except httpx.TimeoutException as e:
            raise InferenceError(ErrorKind.TIMEOUT, f"{type(e).__name__} after {timeout:.1f}s")
        except httpx.HTTPError as e:
            logger.debug("Transport error: %s", type(e).__name__)
            raise InferenceError(ErrorKind.NETWORK_FAILURE, str(e) or type(e).__name__)
        return TransportResponse(status_code=response.status_code, body=response.content)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
