from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable, TypeVar

from domain.errors import AttarError, translate_backend_error


F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def translated(func: F) -> F:
    """
    Re-raise any exception from a Supabase call as a `domain.errors` type.

    Auth-looking failures become `AuthTransientError`, everything else
    `RemoteOperationError`; the original exception is kept as the cause.
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except AttarError:
            raise
        except Exception as exc:
            raise translate_backend_error(exc) from exc

    return wrapper  # type: ignore[return-value]
