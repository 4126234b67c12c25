"""Error taxonomy for remote OCT analysis calls.

Every failure leaving the analysis client is an `AnalysisError` tagged with
an `ErrorKind`. Callers branch on `kind`; the message is for display only.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import openai


class ErrorKind(str, Enum):
    AUTH = "auth"
    QUOTA = "quota"
    SAFETY = "safety"
    UNAVAILABLE = "unavailable"
    CANCELLED = "cancelled"
    OTHER = "other"


DEFAULT_MESSAGES = {
    ErrorKind.AUTH: (
        "Invalid API Key. Please ensure your API key is correctly configured "
        "in your environment variables."
    ),
    ErrorKind.QUOTA: "API Quota Exceeded. Please wait a moment before trying again.",
    ErrorKind.SAFETY: "Content Safety Error. The request was blocked due to safety settings.",
    ErrorKind.UNAVAILABLE: "AI Service Unavailable. Please try again later.",
    ErrorKind.CANCELLED: "Request cancelled by user.",
}

UNEXPECTED_MESSAGE = "An unexpected error occurred during the analysis."

# Substrings that mark a transient failure worth retrying.
RETRYABLE_MARKERS = ("quota", "rate limit", "server error", "unavailable")


class AnalysisError(Exception):
    """A normalized analysis failure."""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None) -> None:
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES.get(kind) or UNEXPECTED_MESSAGE
        super().__init__(self.message)

    @property
    def cancelled(self) -> bool:
        return self.kind is ErrorKind.CANCELLED


class RequestCancelledError(AnalysisError):
    """Raised when the shared cancellation token has fired."""

    def __init__(self) -> None:
        super().__init__(ErrorKind.CANCELLED)


class MissingCredentialError(AnalysisError):
    """Raised before any remote call when no API key is configured."""

    def __init__(self, env_var: str = "OPENAI_API_KEY") -> None:
        super().__init__(ErrorKind.AUTH, f"API Key Not Found. Please configure {env_var}.")


class ClassificationParseError(AnalysisError):
    """Raised when the classification output is missing or malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorKind.OTHER, message)


class ArtifactExtractionError(AnalysisError):
    """Raised when an expected generated image is absent from a response."""

    def __init__(self, artifact: str) -> None:
        self.artifact = artifact
        super().__init__(ErrorKind.OTHER, f"{artifact} failed or received empty image data.")


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the `ErrorKind` for a raw exception raised by a remote call."""
    if isinstance(exc, AnalysisError):
        return exc.kind
    if isinstance(exc, openai.AuthenticationError):
        return ErrorKind.AUTH
    if isinstance(exc, openai.RateLimitError):
        return ErrorKind.QUOTA
    if isinstance(exc, (openai.InternalServerError, openai.APIConnectionError)):
        return ErrorKind.UNAVAILABLE

    message = str(exc).lower()
    if "api key not valid" in message or "incorrect api key" in message:
        return ErrorKind.AUTH
    if "quota" in message or "rate limit" in message:
        return ErrorKind.QUOTA
    if "blocked" in message or "safety" in message:
        return ErrorKind.SAFETY
    if "server error" in message or "500" in message or "unavailable" in message:
        return ErrorKind.UNAVAILABLE
    if "abort" in message:
        return ErrorKind.CANCELLED
    return ErrorKind.OTHER


def normalize_error(exc: BaseException) -> AnalysisError:
    """Convert any exception into an `AnalysisError` exactly once."""
    if isinstance(exc, AnalysisError):
        return exc
    kind = classify_error(exc)
    if kind is ErrorKind.OTHER:
        return AnalysisError(ErrorKind.OTHER, str(exc) or UNEXPECTED_MESSAGE)
    return AnalysisError(kind)


def is_retryable_error(exc: BaseException) -> bool:
    """Return True for transient quota or availability failures."""
    if isinstance(exc, AnalysisError):
        return False
    if isinstance(exc, (openai.RateLimitError, openai.InternalServerError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)
