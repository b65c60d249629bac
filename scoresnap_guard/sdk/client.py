"""
Guarded scoreboard analysis client.

Checks the credential and the local rate limits before any network I/O,
then sends the image to the remote vision model with bounded retries.
"""

import asyncio
import base64
import json
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from scoresnap_guard.config.loader import ClientSettings
from scoresnap_guard.core.admission import AdmissionController
from scoresnap_guard.core.analysis import AnalysisResult
from scoresnap_guard.core.errors import (
    CredentialError,
    CredentialErrorKind,
    ErrorKind,
    InferenceError,
)
from scoresnap_guard.core.security import get_logger, is_valid_api_key
from scoresnap_guard.core.validator import ResponseValidator
from .credentials import CredentialStore
from .imaging import ImagePreprocessor, PillowImagePreprocessor, detect_media_type
from .transport import HttpxTransport, InferenceRequest, Transport, TransportResponse

logger = get_logger(__name__)

SCOREBOARD_PROMPT = """\
You are an expert basketball scoreboard analyzer. Analyze this image of a basketball scoreboard and extract the following information in JSON format:

{
  "homeTeam": {
    "score": number
  },
  "awayTeam": {
    "score": number
  },
  "gameInfo": {
    "quarter": number (1-4, 5 or higher for overtime),
    "timeRemaining": "string (MM:SS format)",
    "possession": "home" or "away" (if visible),
    "shotClock": number (if visible)
  },
  "confidence": number (0-1, how confident you are in the extraction),
  "notes": "string (any relevant observations or uncertainties)"
}

Important guidelines:
- Focus only on the scoreboard display, ignore other elements
- Do not extract team names, fouls, or timeouts
- If a value is not visible or unclear, use null
- Be precise with numbers and text
- Consider different scoreboard layouts and formats
- Account for potential glare, angle, or lighting issues
- If the image is not a basketball scoreboard, return null for all fields
- Respond with the JSON object only
"""


class AttemptOutcome(Enum):
    """Result of a single transport attempt."""
    SUCCESS = auto()
    RETRYABLE = auto()
    FATAL = auto()


@dataclass(frozen=True)
class AttemptResult:
    """State produced by Attempt(n)."""
    attempt: int
    outcome: AttemptOutcome
    response: Optional[TransportResponse] = None
    error: Optional[InferenceError] = None


def classify_response(attempt: int, response: TransportResponse) -> AttemptResult:
    """Map an HTTP status to the next retry state.

    2xx succeeds, 5xx is retried, 429 and every other status are fatal.
    """
    status = response.status_code
    if 200 <= status < 300:
        return AttemptResult(attempt, AttemptOutcome.SUCCESS, response=response)
    if status == 429:
        error = InferenceError(
            ErrorKind.RATE_LIMIT_EXCEEDED, "remote service is throttling", status_code=status
        )
        return AttemptResult(attempt, AttemptOutcome.FATAL, error=error)
    if 500 <= status < 600:
        error = InferenceError(ErrorKind.SERVER_ERROR, status_code=status)
        return AttemptResult(attempt, AttemptOutcome.RETRYABLE, error=error)
    return AttemptResult(
        attempt,
        AttemptOutcome.FATAL,
        error=InferenceError(ErrorKind.CLIENT_ERROR, status_code=status)
    )


def should_retry(exception: BaseException) -> bool:
    """Retry condition: network failures and 5xx responses only."""
    return isinstance(exception, InferenceError) and exception.retryable


def _first_text_block(envelope: Any) -> Optional[str]:
    if not isinstance(envelope, dict):
        return None
    content = envelope.get("content")
    if not isinstance(content, list):
        return None
    for block in content:
        if isinstance(block, dict) and isinstance(block.get("text"), str):
            return block["text"]
    return None


def _extract_json_object(text: str) -> str:
    """Slice from the first '{' to the last '}' to drop any prose around it."""
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text


class InferenceClient:
    """Remote scoreboard analysis with admission control.

    Tracks ``is_processing`` for the lifetime of a call, keeps the last
    successful result and the last error until cleared or superseded.
    """

    def __init__(
        self,
        admission: AdmissionController,
        credentials: CredentialStore,
        transport: Optional[Transport] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
        settings: Optional[ClientSettings] = None,
        validator: Optional[ResponseValidator] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """Initialize the client.

        Args:
            admission: Rate limiter consulted before and updated after each call
            credentials: Source of the API key
            transport: Request sender (defaults to httpx)
            preprocessor: Image resizer (defaults to Pillow)
            settings: Endpoint, model, timeout and retry settings
            validator: Output schema enforcement
            sleep: Awaitable used for backoff between attempts
        """
        self._admission = admission
        self._credentials = credentials
        self._transport = transport or HttpxTransport()
        self._preprocessor = preprocessor or PillowImagePreprocessor()
        self._settings = settings or ClientSettings()
        self._validator = validator or ResponseValidator()
        self._sleep = sleep

        self.is_processing = False
        self.last_result: Optional[AnalysisResult] = None
        # An InferenceError, unless a collaborator raised something unexpected
        self.last_error: Optional[Exception] = None

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    # API key management

    def set_api_key(self, api_key: str) -> None:
        """Validate and store an API key.

        Raises:
            InferenceError: INVALID_CREDENTIAL_FORMAT if the key is malformed
        """
        try:
            self._credentials.set(api_key)
        except CredentialError as e:
            raise InferenceError(ErrorKind.INVALID_CREDENTIAL_FORMAT, e.detail) from None

    def has_valid_api_key(self) -> bool:
        try:
            return is_valid_api_key(self._credentials.get())
        except CredentialError:
            return False

    def clear_api_key(self) -> None:
        self._credentials.clear()

    def _require_api_key(self) -> str:
        try:
            api_key = self._credentials.get()
        except CredentialError as e:
            if e.kind == CredentialErrorKind.NOT_FOUND:
                raise InferenceError(ErrorKind.NO_CREDENTIAL) from None
            raise InferenceError(ErrorKind.INVALID_CREDENTIAL_FORMAT, e.detail) from None
        if not is_valid_api_key(api_key):
            raise InferenceError(ErrorKind.INVALID_CREDENTIAL_FORMAT)
        return api_key

    # Analysis

    async def analyze(self, image: bytes) -> AnalysisResult:
        """Extract scores and game state from a scoreboard photo.

        Credential and rate limit failures are raised before any network
        call is made. On success the call is recorded against the limits
        exactly once.

        Args:
            image: Encoded image bytes (JPEG, PNG, GIF or WebP)

        Returns:
            Validated AnalysisResult

        Raises:
            InferenceError: On any failure, tagged with its ErrorKind
            asyncio.CancelledError: If the calling task is cancelled
        """
        self.is_processing = True
        self.last_error = None
        try:
            result = await self._analyze(image)
        except InferenceError as e:
            self.last_error = e
            logger.warning("Scoreboard analysis failed: %s", e)
            raise
        except asyncio.CancelledError:
            self.last_error = InferenceError(ErrorKind.CANCELLED)
            logger.info("Scoreboard analysis cancelled")
            raise
        except Exception as e:
            self.last_error = e
            logger.exception("Unexpected failure during scoreboard analysis")
            raise
        finally:
            self.is_processing = False

        self.last_result = result
        logger.info("Scoreboard analysis completed")
        return result

    async def _analyze(self, image: bytes) -> AnalysisResult:
        api_key = self._require_api_key()

        if not self._admission.can_proceed():
            raise InferenceError(ErrorKind.RATE_LIMIT_EXCEEDED, "local usage limit reached")

        payload = await self._preprocess(image)
        request = self.build_request(api_key, payload)

        timeout = self._settings.timeout_seconds
        try:
            response = await asyncio.wait_for(self._send_with_retry(request), timeout=timeout)
        except asyncio.TimeoutError:
            raise InferenceError(ErrorKind.TIMEOUT, f"no response within {timeout:.0f}s") from None

        result = self._validator.validate(self.parse_response(response.body))

        if not self._admission.record_call():
            logger.warning("Analysis succeeded but the call could not be recorded")
        return result

    async def _preprocess(self, image: bytes) -> bytes:
        if not image:
            raise InferenceError(ErrorKind.IMAGE_PROCESSING_FAILED, "image is empty")
        try:
            return await asyncio.to_thread(
                self._preprocessor.resize, image, self._settings.max_image_dimension
            )
        except InferenceError:
            raise
        except (OSError, ValueError) as e:
            raise InferenceError(ErrorKind.IMAGE_PROCESSING_FAILED, str(e)) from None

    def build_request(self, api_key: str, image: bytes) -> InferenceRequest:
        """Build the Messages API request for one image.

        The API key travels in the ``x-api-key`` header only.
        """
        body = {
            "model": self._settings.model,
            "max_tokens": self._settings.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": detect_media_type(image),
                                "data": base64.b64encode(image).decode("ascii"),
                            },
                        },
                        {"type": "text", "text": SCOREBOARD_PROMPT},
                    ],
                }
            ],
        }
        return InferenceRequest(
            url=self._settings.endpoint,
            body=json.dumps(body).encode("utf-8"),
            headers={
                "x-api-key": api_key,
                "anthropic-version": self._settings.api_version,
                "content-type": "application/json",
            }
        )

    # Retry state machine: Attempt(n) -> SUCCESS | RETRYABLE -> Attempt(n+1) | FATAL.
    # Backoff between attempts is base * 2**(n-1) seconds.

    async def _send_with_retry(self, request: InferenceRequest) -> TransportResponse:
        deadline = asyncio.get_running_loop().time() + self._settings.timeout_seconds
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=wait_exponential(multiplier=self._settings.backoff_base_seconds),
            retry=retry_if_exception(should_retry),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self._attempt(
                    request, attempt.retry_state.attempt_number, deadline
                )
                if result.outcome is not AttemptOutcome.SUCCESS:
                    raise result.error
                return result.response

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        logger.info(
            "Attempt %d/%d failed (%s), retrying in %.1fs",
            retry_state.attempt_number,
            self._settings.max_attempts,
            error.kind.value,
            retry_state.next_action.sleep
        )

    async def _attempt(self, request: InferenceRequest, attempt: int, deadline: float) -> AttemptResult:
        remaining = max(0.001, deadline - asyncio.get_running_loop().time())
        try:
            response = await self._transport.send(request, remaining)
        except InferenceError as e:
            outcome = AttemptOutcome.RETRYABLE if e.retryable else AttemptOutcome.FATAL
            return AttemptResult(attempt, outcome, error=e)
        except OSError as e:
            error = InferenceError(ErrorKind.NETWORK_FAILURE, str(e) or type(e).__name__)
            return AttemptResult(attempt, AttemptOutcome.RETRYABLE, error=error)
        return classify_response(attempt, response)

    # Parsing

    def parse_response(self, body: bytes) -> AnalysisResult:
        """Decode a Messages API response into an unvalidated AnalysisResult.

        Raises:
            InferenceError: JSON_PARSING_FAILED if no JSON object can be decoded
        """
        try:
            envelope = json.loads(body)
        except (ValueError, TypeError, RecursionError):
            raise InferenceError(ErrorKind.JSON_PARSING_FAILED, "response body is not JSON") from None

        text = _first_text_block(envelope)
        if text is None:
            raise InferenceError(ErrorKind.JSON_PARSING_FAILED, "response has no text content")

        try:
            data = json.loads(_extract_json_object(text))
        except (ValueError, RecursionError):
            raise InferenceError(ErrorKind.JSON_PARSING_FAILED, "model output is not valid JSON") from None

        if not isinstance(data, dict):
            raise InferenceError(ErrorKind.JSON_PARSING_FAILED, "model output is not a JSON object")
        return AnalysisResult.from_dict(data)

    # Result bookkeeping

    def clear_last_result(self) -> None:
        self.last_result = None
        self.last_error = None

    async def aclose(self) -> None:
        close = getattr(self._transport, "aclose", None)
        if close is not None:
            await close()
