"""
Error taxonomy for the audit pipeline.

Every error raised by the pipeline derives from AuditorError and carries
enough context (provider, model, attempt) to diagnose a failed chunk.
classify_error() maps arbitrary exceptions coming back from an Analyzer
(httpx, openai SDK, or our own) onto the retry decisions:

- CONFIGURATION / MALFORMED_REQUEST: fail immediately, never retried
- TRANSIENT: retried with the same credential
- QUOTA / CREDENTIAL: retried after rotating the credential (when supported)
"""

import asyncio
from enum import Enum

import httpx
import openai


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    MALFORMED_REQUEST = "malformed_request"
    TRANSIENT = "transient"
    QUOTA = "quota"
    CREDENTIAL = "credential"
    MALFORMED_RESPONSE = "malformed_response"
    FATAL = "fatal"


class AuditorError(Exception):
    """Base error with provider/model/attempt context."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        attempt: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.model = model
        self.attempt = attempt

    def context(self) -> str:
        parts = []
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.model:
            parts.append(f"model={self.model}")
        if self.attempt is not None:
            parts.append(f"attempt={self.attempt}")
        return ", ".join(parts)

    def __str__(self) -> str:
        ctx = self.context()
        return f"{self.message} ({ctx})" if ctx else self.message


class ConfigurationError(AuditorError):
    """Bad token budget, unknown provider or model, missing credentials."""


class TransientProviderError(AuditorError):
    """Timeouts, 5xx, admission timeouts - worth another attempt."""


class QuotaExhaustedError(AuditorError):
    """Every credential hit its quota within the retry budget."""


class CredentialError(AuditorError):
    """The provider rejected the credential (401/403)."""


class MalformedResponseError(AuditorError):
    """Provider content could not be parsed into findings."""


class FatalError(AuditorError):
    """The pipeline is shutting down."""


# Substrings that mark a quota/rate-limit failure in otherwise untyped errors
QUOTA_MARKERS = ("429", "quota", "rate limit", "rate_limit", "resource_exhausted", "too many requests")

_KIND_BY_TYPE: list[tuple[type, ErrorKind]] = [
    (ConfigurationError, ErrorKind.CONFIGURATION),
    (QuotaExhaustedError, ErrorKind.QUOTA),
    (CredentialError, ErrorKind.CREDENTIAL),
    (MalformedResponseError, ErrorKind.MALFORMED_RESPONSE),
    (FatalError, ErrorKind.FATAL),
    (TransientProviderError, ErrorKind.TRANSIENT),
    # openai SDK - subclasses before their APIStatusError/APIError parents
    (openai.RateLimitError, ErrorKind.QUOTA),
    (openai.AuthenticationError, ErrorKind.CREDENTIAL),
    (openai.PermissionDeniedError, ErrorKind.CREDENTIAL),
    (openai.BadRequestError, ErrorKind.MALFORMED_REQUEST),
    (openai.NotFoundError, ErrorKind.MALFORMED_REQUEST),
    (openai.UnprocessableEntityError, ErrorKind.MALFORMED_REQUEST),
    (openai.APITimeoutError, ErrorKind.TRANSIENT),
    (openai.APIConnectionError, ErrorKind.TRANSIENT),
    (openai.InternalServerError, ErrorKind.TRANSIENT),
    (httpx.TimeoutException, ErrorKind.TRANSIENT),
    (httpx.TransportError, ErrorKind.TRANSIENT),
    (asyncio.TimeoutError, ErrorKind.TRANSIENT),
]


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code to an ErrorKind."""
    if status_code == 429:
        return ErrorKind.QUOTA
    if status_code in (401, 403):
        return ErrorKind.CREDENTIAL
    if status_code in (400, 404, 405, 413, 422):
        return ErrorKind.MALFORMED_REQUEST
    return ErrorKind.TRANSIENT


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Classify an exception raised while analyzing a chunk.

    Args:
        exc: The exception raised by the Analyzer (or by our own code)

    Returns:
        The ErrorKind driving retry / rotation decisions
    """
    if isinstance(exc, httpx.HTTPStatusError):
        kind = classify_status(exc.response.status_code)
        # Some providers report quota exhaustion as 400/403 with a reason
        if kind != ErrorKind.QUOTA and _mentions_quota(exc.response.text):
            return ErrorKind.QUOTA
        return kind

    for exc_type, kind in _KIND_BY_TYPE:
        if isinstance(exc, exc_type):
            return kind

    if _mentions_quota(str(exc)):
        return ErrorKind.QUOTA

    return ErrorKind.TRANSIENT


def is_retryable(kind: ErrorKind) -> bool:
    return kind in (ErrorKind.TRANSIENT, ErrorKind.QUOTA, ErrorKind.CREDENTIAL)


def _mentions_quota(text: str) -> bool:
    text_lower = (text or "").lower()
    return any(marker in text_lower for marker in QUOTA_MARKERS)
