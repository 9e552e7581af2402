"""
Provider Error Classification

Every failure coming out of the AI provider is decoded into one
ProviderFailure value before it reaches a record's `error` column:

    ProviderFailure(kind=ProviderErrorKind.RATE_LIMITED,
                    message="Rate limit reached for gpt-4.1 …",
                    status_code=429)

Known shapes (openai SDK >= 1.x):
  - APITimeoutError       → TIMEOUT        (subclass of APIConnectionError)
  - APIConnectionError    → CONNECTION
  - RateLimitError        → RATE_LIMITED   (429)
  - AuthenticationError,
    PermissionDeniedError → AUTHENTICATION (401 / 403)
  - other APIStatusError  → SERVER (>= 500) or INVALID_REQUEST (4xx)
  - any other APIError    → UNKNOWN, SDK message
  - anything else         → UNKNOWN, str(exc) or the class name

Status errors carry a JSON body in one of two shapes, both decoded here:
    {"error": {"message": "..."}}      raw API envelope
    {"message": "..."}                 envelope already unwrapped by the SDK
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

import openai


class ProviderErrorKind(str, Enum):
    RATE_LIMITED    = "rate_limited"
    TIMEOUT         = "timeout"
    CONNECTION      = "connection"
    AUTHENTICATION  = "authentication"
    INVALID_REQUEST = "invalid_request"
    SERVER          = "server"
    UNKNOWN         = "unknown"


_RETRYABLE_KINDS = frozenset({
    ProviderErrorKind.RATE_LIMITED,
    ProviderErrorKind.TIMEOUT,
    ProviderErrorKind.CONNECTION,
    ProviderErrorKind.SERVER,
})

GENERIC_MESSAGE = "Unknown provider error"


@dataclass(frozen=True)
class ProviderFailure:
    kind:        ProviderErrorKind
    message:     str
    status_code: int | None = None

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE_KINDS

    def __str__(self) -> str:
        return self.message


def _message_from_body(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    nested = body.get("error")
    if isinstance(nested, dict) and isinstance(nested.get("message"), str):
        return nested["message"]
    if isinstance(body.get("message"), str):
        return body["message"]
    return None


def classify_provider_error(exc: BaseException) -> ProviderFailure:
    """Decode an exception raised by a provider call. Never raises."""
    # Order matters: APITimeoutError is an APIConnectionError.
    if isinstance(exc, openai.APITimeoutError):
        return ProviderFailure(ProviderErrorKind.TIMEOUT, "Request to AI provider timed out")

    if isinstance(exc, openai.APIConnectionError):
        return ProviderFailure(ProviderErrorKind.CONNECTION, exc.message or "Connection error")

    if isinstance(exc, openai.APIStatusError):
        message = _message_from_body(exc.body) or exc.message or GENERIC_MESSAGE
        if isinstance(exc, openai.RateLimitError):
            kind = ProviderErrorKind.RATE_LIMITED
        elif isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            kind = ProviderErrorKind.AUTHENTICATION
        elif exc.status_code >= 500:
            kind = ProviderErrorKind.SERVER
        else:
            kind = ProviderErrorKind.INVALID_REQUEST
        return ProviderFailure(kind, message, exc.status_code)

    if isinstance(exc, openai.APIError):
        return ProviderFailure(ProviderErrorKind.UNKNOWN, exc.message or GENERIC_MESSAGE)

    return ProviderFailure(ProviderErrorKind.UNKNOWN, str(exc) or type(exc).__name__)
