from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar

from domain.errors import AuthTransientError, SessionExpired
from domain.models import Principal

if TYPE_CHECKING:
    from application.session_guardian import SessionGuardian


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 1


async def call_with_auth_retry(
    call: Callable[[Principal], Awaitable[T]],
    guardian: "SessionGuardian",
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    on_retry: Optional[Callable[[int], None]] = None,
) -> T:
    """
    Run `call` with the current principal, refreshing and retrying on auth errors.

    An `AuthTransientError` triggers a guardian refresh followed by another
    attempt with the refreshed principal, at most `max_retries` times.
    A failed refresh or exhausted retries raise `SessionExpired`. Every
    other error propagates unchanged.
    """

    attempt = 0
    while True:
        principal = guardian.state.principal
        if principal is None:
            raise SessionExpired()

        try:
            return await call(principal)
        except AuthTransientError as exc:
            if attempt >= max_retries:
                logger.warning("Auth error persisted after %d retries: %s", attempt, exc.message)
                raise SessionExpired() from exc

            attempt += 1
            logger.info("Auth error (%s); refreshing session before retry %d", exc.message, attempt)
            if on_retry is not None:
                on_retry(attempt)
            if not await guardian.refresh():
                raise SessionExpired() from exc
