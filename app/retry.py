"""
Bounded retry for store calls.

Only transport-level failures are retried.  Constraint violations, missing
rows and programming errors surface on the first attempt.  Every attempt
runs under its own deadline, and a timed-out attempt counts as transient.
"""
import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from app.config import settings
from app.exceptions import TransientInfraError

logger = logging.getLogger(__name__)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, DBAPIError):
        return bool(exc.connection_invalidated)
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, OSError))


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    delay: float = 0.1
    backoff: float = 2.0
    timeout: float | None = 5.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            attempts=settings.STORE_RETRY_ATTEMPTS,
            delay=settings.STORE_RETRY_DELAY,
            backoff=settings.STORE_RETRY_BACKOFF,
            timeout=settings.STORE_TIMEOUT,
        )

    async def call(
        self,
        func: Callable[..., Awaitable],
        *args,
        reset: Callable[[], Awaitable[None]] | None = None,
        **kwargs,
    ):
        """
        Await ``func(*args, **kwargs)`` until it succeeds or attempts run out.

        *reset* runs after every transient failure, the last one included
        (repositories use it to roll back the failed transaction so the
        session stays usable).  Exhaustion raises ``TransientInfraError``
        chained to the last failure.
        """
        attempts = max(1, self.attempts)
        name = getattr(func, "__qualname__", repr(func))
        for attempt in range(1, attempts + 1):
            try:
                # asyncio.timeout keeps the call in the current task, so the
                # per-request query counter still sees its statements.
                async with asyncio.timeout(self.timeout):
                    return await func(*args, **kwargs)
            except Exception as exc:
                if not is_transient(exc):
                    raise
                if reset is not None:
                    await reset()
                if attempt == attempts:
                    logger.error("%s failed after %d attempt(s): %s", name, attempts, exc)
                    raise TransientInfraError() from exc
                logger.warning(
                    "%s failed (attempt %d/%d), retrying: %s", name, attempt, attempts, exc
                )
                await asyncio.sleep(self.delay * self.backoff ** (attempt - 1))


def with_retry(method):
    """
    Run a repository coroutine method under ``self.retry_policy``.

    The owning object must expose ``retry_policy`` and a ``_reset``
    coroutine that rolls its session back after a failed attempt.
    """

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        return await self.retry_policy.call(method, self, *args, reset=self._reset, **kwargs)

    return wrapper
