"""Callable-function error codes and user-facing messages.

Errors carry Firebase-style codes (``functions/unavailable``,
``functions/permission-denied``, ...). The server reports the canonical
status in upper snake case (``PERMISSION_DENIED``); transport failures and
bare HTTP errors are mapped onto the same code space.
"""

from __future__ import annotations

from typing import Any

CODE_PREFIX = "functions/"

# HTTP status -> canonical status, for responses without an error body
HTTP_STATUS_CODES: dict[int, str] = {
    400: "invalid-argument",
    401: "unauthenticated",
    403: "permission-denied",
    404: "not-found",
    409: "already-exists",
    429: "resource-exhausted",
    499: "cancelled",
    500: "internal",
    501: "unimplemented",
    503: "unavailable",
    504: "deadline-exceeded",
}

FRIENDLY_MESSAGES: dict[str, str] = {
    "functions/unavailable": "Service temporarily unavailable. Please try again in a few minutes.",
    "functions/permission-denied": "Permission denied. Please check your access rights.",
    "functions/unauthenticated": "Your session has expired. Please sign in again.",
    "functions/internal": "The request failed due to a server error. Please try again.",
    "functions/deadline-exceeded": "The request timed out. Please try again.",
    "functions/resource-exhausted": "Too many requests. Please wait a moment and try again.",
    "functions/not-found": "The requested item could not be found.",
}

DEFAULT_MESSAGE = "Something went wrong. Please try again."

# Codes returned when the user has not connected Google Calendar yet
CALENDAR_NOT_CONNECTED_CODES = frozenset(
    {"functions/failed-precondition", "functions/not-found", "functions/unauthenticated"}
)
CALENDAR_NOT_CONNECTED_MARKERS = ("Calendar not connected", "User not found")


def normalize_code(status: Any) -> str:
    """``PERMISSION_DENIED`` / ``permission-denied`` -> ``functions/permission-denied``."""
    if not isinstance(status, str) or not status:
        return f"{CODE_PREFIX}unknown"
    code = status.strip()
    if code.startswith(CODE_PREFIX):
        return code
    return CODE_PREFIX + code.lower().replace("_", "-")


class FunctionsError(Exception):
    """A callable function failed.

    Attributes:
        code: ``functions/<status>`` code.
        function: Name of the function that failed.
        details: Optional structured details from the server.
    """

    def __init__(
        self,
        code: str,
        message: str = "",
        *,
        function: str = "",
        details: Any = None,
    ) -> None:
        self.code = normalize_code(code)
        self.message = message
        self.function = function
        self.details = details
        super().__init__(f"{function or 'function'} failed ({self.code}): {message}")

    @classmethod
    def from_http_status(cls, status_code: int, message: str = "", *, function: str = "") -> FunctionsError:
        code = HTTP_STATUS_CODES.get(status_code, "internal" if status_code >= 500 else "unknown")
        return cls(code, message or f"HTTP {status_code}", function=function)


def friendly_message(error: BaseException) -> str:
    """User-facing text for a failure; unknown codes fall back to the server message."""
    if isinstance(error, FunctionsError):
        known = FRIENDLY_MESSAGES.get(error.code)
        if known:
            return known
        if "CORS" in error.message:
            return "Network error. Please check your connection and try again."
        return error.message or DEFAULT_MESSAGE
    return str(error) or DEFAULT_MESSAGE


def is_calendar_not_connected(error: BaseException) -> bool:
    """True for the errors listCalendarEvents returns before the user links Google Calendar."""
    if not isinstance(error, FunctionsError):
        return False
    if error.code in CALENDAR_NOT_CONNECTED_CODES:
        return True
    return any(marker in error.message for marker in CALENDAR_NOT_CONNECTED_MARKERS)
