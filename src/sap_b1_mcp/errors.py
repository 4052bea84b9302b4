# SAP B1 Query MCP Server
# File: errors.py
# Version: v3

"""Error taxonomy and the single place where upstream errors are classified.

The Service Layer is inconsistent about status codes: an expired session
sometimes comes back as 401, sometimes as a 500 whose body mentions the
session. Classification therefore mixes status codes with message
substrings, but only here.
"""

from __future__ import annotations

import enum
import json
from typing import Optional, Sequence, Tuple


class B1Error(RuntimeError):
    """Base class for failures talking to the Service Layer."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class AuthFailure(B1Error):
    """Credentials rejected or the login endpoint could not be reached."""


class FetchFailure(B1Error):
    """The upstream returned a non-success status while reading data."""


class MalformedResponse(B1Error):
    """The upstream returned data that could not be parsed or has an unknown shape."""


class QueryResolutionError(B1Error):
    """The natural-language question could not be turned into a query."""


class QueryCancelled(Exception):
    """Cooperative early exit requested by the caller.

    Not a B1Error: a cancelled query did not fail.
    """


class ErrorKind(str, enum.Enum):
    AUTH = "auth"
    INVALID_FILTER = "invalid_filter"
    CANCELLED = "cancelled"
    MALFORMED = "malformed"
    OTHER = "other"


# Ordered: first match wins. (kind, statuses, message substrings)
_CLASSIFICATION_TABLE: Sequence[Tuple[ErrorKind, Tuple[int, ...], Tuple[str, ...]]] = (
    (
        ErrorKind.AUTH,
        (401,),
        (
            "401",
            "Unauthorized",
            "Invalid session",
            "invalid session",
            "session already timeout",
            "Session timeout",
            "authentication",
        ),
    ),
    (
        ErrorKind.INVALID_FILTER,
        (400,),
        ("invalid", "Invalid", "Property"),
    ),
)


def classify(error: BaseException) -> ErrorKind:
    """Map an exception raised during a query to an ErrorKind."""
    if isinstance(error, QueryCancelled):
        return ErrorKind.CANCELLED
    if isinstance(error, MalformedResponse):
        return ErrorKind.MALFORMED

    status = getattr(error, "status", None)
    message = str(error)

    for kind, statuses, needles in _CLASSIFICATION_TABLE:
        if status is not None and status in statuses:
            return kind
        if any(needle in message for needle in needles):
            return kind

    return ErrorKind.OTHER


def extract_service_layer_message(body: str) -> str:
    """Pull the human-readable message out of a Service Layer error envelope.

    The envelope looks like ``{"error": {"code": -304, "message": {"lang": "en-us",
    "value": "..."}}}``; anything else is returned trimmed to 500 chars.
    """
    text = (body or "").strip()
    try:
        data = json.loads(text)
    except ValueError:
        return text[:500]

    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            msg = err.get("message")
            if isinstance(msg, dict) and msg.get("value"):
                return str(msg["value"])
            if isinstance(msg, str) and msg:
                return msg
            if err.get("code") is not None:
                return f"Error {err.get('code')}"
        if isinstance(data.get("message"), str):
            return data["message"]

    return text[:500]
