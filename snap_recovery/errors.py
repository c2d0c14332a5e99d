"""Error taxonomy and classification.

Every failure the service sees is mapped onto one of four kinds:

- ``permanent``: retrying cannot help (bad input, missing resource, denied access)
- ``transient``: worth retrying (timeouts, throttling, unavailable services)
- ``business``: a domain rule was violated; a permanent subtype
- ``fatal``: the whole request must stop, not just the unit of work

Unknown errors are classified as transient so that they get retried instead of
being dropped.
"""

import asyncio
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError


class ErrorKind(str, Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"
    BUSINESS = "business"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT


class ClassifiedError(Exception):
    """A failure tagged with its kind. Never mutated after construction."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self._kind = ErrorKind(kind)
        self._message = message
        self._cause = cause

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def cause(self) -> Optional[BaseException]:
        return self._cause

    @property
    def retryable(self) -> bool:
        return self._kind.retryable

    @property
    def is_fatal(self) -> bool:
        return self._kind is ErrorKind.FATAL

    def to_dict(self) -> dict:
        return {
            "kind": self._kind.value,
            "message": self._message,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"ClassifiedError({self._kind.value}, {self._message!r})"


def permanent(message: str, cause: Optional[BaseException] = None) -> ClassifiedError:
    return ClassifiedError(ErrorKind.PERMANENT, message, cause)


def transient(message: str, cause: Optional[BaseException] = None) -> ClassifiedError:
    return ClassifiedError(ErrorKind.TRANSIENT, message, cause)


def business(message: str, cause: Optional[BaseException] = None) -> ClassifiedError:
    return ClassifiedError(ErrorKind.BUSINESS, message, cause)


def fatal(message: str, cause: Optional[BaseException] = None) -> ClassifiedError:
    return ClassifiedError(ErrorKind.FATAL, message, cause)


# HTTP status codes that are worth another attempt
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
PERMANENT_STATUS_CODES = frozenset({400, 401, 403, 404, 409})

RETRYABLE_ERROR_CODES = frozenset({"ETIMEDOUT", "ECONNRESET", "ECONNREFUSED", "EAI_AGAIN"})

# Checked in order; the first group with a matching phrase wins.
_PATTERNS: list[tuple[ErrorKind, str, tuple[str, ...]]] = [
    (ErrorKind.FATAL, "configuration error", (
        "configuration error",
        "misconfigured",
        "invariant violation",
        "environment variable",
    )),
    (ErrorKind.PERMANENT, "invalid address for subnet", (
        "outside subnet range",
        "not within the subnet",
        "privateipaddressnotinsubnet",
        "invalidprivateipaddress",
        "ip address is not valid",
    )),
    (ErrorKind.BUSINESS, "business rule violated", (
        "only os-disk snapshots",
        "only os disk snapshots",
        "validation",
    )),
    (ErrorKind.PERMANENT, "resource already exists", (
        "already exists",
        "conflicterror",
        "conflict",
    )),
    (ErrorKind.PERMANENT, "authentication/authorization error", (
        "unauthorized",
        "forbidden",
        "authorizationfailed",
        "authenticationfailed",
        "access denied",
    )),
    (ErrorKind.PERMANENT, "resource not found", (
        "notfound",
        "not found",
        "does not exist",
        "status: 404",
    )),
    (ErrorKind.TRANSIENT, "quota limits", (
        "quota",
        "toomanyrequests",
        "limit exceeded",
    )),
    (ErrorKind.TRANSIENT, "rate limiting", (
        "throttl",
        "rate limit",
    )),
    (ErrorKind.TRANSIENT, "network issues", (
        "timeout",
        "timed out",
        "connection reset",
        "connection",
        "network",
    )),
    (ErrorKind.TRANSIENT, "service unavailable", (
        "serviceunavailable",
        "service unavailable",
        "internalservererror",
        "temporarily unavailable",
    )),
    (ErrorKind.PERMANENT, "invalid input", (
        "malformed",
        "invalid",
        "badrequest",
        "bad request",
        "invalid syntax",
    )),
]


def _describe(error: Any) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, BaseException):
        text = str(error)
        return text or error.__class__.__name__
    if isinstance(error, str):
        return error
    try:
        return repr(error)
    except Exception:
        return "Unknown error"


def _status_code(error: Any) -> Optional[int]:
    for attr in ("status_code", "statusCode", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _classify_kind(error: Any, text: str) -> tuple[ErrorKind, str]:
    if isinstance(error, ValidationError):
        return ErrorKind.BUSINESS, "validation failed"
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT, "network issues"

    code = getattr(error, "code", None)
    if isinstance(code, str) and code.upper() in RETRYABLE_ERROR_CODES:
        return ErrorKind.TRANSIENT, "network issues"

    lowered = text.lower()
    for kind, label, phrases in _PATTERNS:
        if any(phrase in lowered for phrase in phrases):
            return kind, label

    status = _status_code(error)
    if status in RETRYABLE_STATUS_CODES:
        return ErrorKind.TRANSIENT, f"status {status}"
    if status in PERMANENT_STATUS_CODES:
        return ErrorKind.PERMANENT, f"status {status}"

    return ErrorKind.TRANSIENT, "unknown error"


def classify(error: Any, operation: Optional[str] = None) -> ClassifiedError:
    """Map any raw failure onto a ClassifiedError.

    Pure, deterministic and total. Already-classified errors are returned
    unchanged. ``operation`` only decorates the message of newly classified
    errors, it never changes the kind.
    """
    if isinstance(error, ClassifiedError):
        return error

    try:
        text = _describe(error)
        kind, label = _classify_kind(error, text)
    except Exception:
        text, kind, label = "Unknown error", ErrorKind.TRANSIENT, "unknown error"

    if operation:
        message = f"{operation} failed ({label}): {text}"
    else:
        message = text
    cause = error if isinstance(error, BaseException) else None
    return ClassifiedError(kind, message, cause)
