from __future__ import annotations

from typing import Optional


class AttarError(Exception):
    """Base class for failures the client core knows how to handle."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class SessionExpired(AttarError):
    """
    The session is absent, provably expired, or could not be refreshed.

    Surfaces at the UI boundary as "please sign in again".
    """

    def __init__(self, message: str = "Please sign in again.", code: Optional[str] = None) -> None:
        super().__init__(message, code)


class AuthTransientError(AttarError):
    """A remote call was rejected with a token / unauthorized signal."""


class InsufficientBalance(AttarError):
    def __init__(self, message: str = "insufficient balance", code: Optional[str] = None) -> None:
        super().__init__(message, code)


class InvalidRequest(AttarError):
    """A mutation rejected locally, before any remote call was made."""


class RemoteOperationError(AttarError):
    """Any other remote failure: network, validation, server error."""


class PartialCommitDrift(AttarError):
    """
    The vote record was written but the aggregate tally was not.

    Logged and reported as a warning only; the vote stands.
    """


_AUTH_CODES = {
    "401",
    "403",
    "PGRST301",
    "PGRST302",
    "bad_jwt",
    "invalid_jwt",
    "no_authorization",
    "session_expired",
    "session_not_found",
    "refresh_token_not_found",
    "refresh_token_already_used",
}

_AUTH_KEYWORDS = (
    "jwt",
    "token",
    "expired",
    "unauthorized",
    "not authenticated",
    "invalid claim",
)


def is_auth_failure(exc: BaseException) -> bool:
    """
    Decide whether a backend failure means the session needs refreshing.

    Looks at the HTTP status, the PostgREST / auth error code, and finally
    at the message text, since not every backend path sets a code.
    """

    status = getattr(exc, "status", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    if status in (401, "401"):
        return True

    code = getattr(exc, "code", None)
    if code is not None and str(code) in _AUTH_CODES:
        return True

    message = getattr(exc, "message", None) or str(exc)
    lowered = str(message).lower()
    return any(keyword in lowered for keyword in _AUTH_KEYWORDS)


def translate_backend_error(exc: BaseException) -> AttarError:
    """Map an arbitrary backend exception onto the client error taxonomy."""

    if isinstance(exc, AttarError):
        return exc

    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    code = getattr(exc, "code", None)
    code = str(code) if code is not None else None
    if is_auth_failure(exc):
        return AuthTransientError(str(message), code)
    return RemoteOperationError(str(message), code)
