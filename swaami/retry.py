"""Exponential backoff with jitter for calls to the store and the API.

Retrying is about transport faults only. Business outcomes (a lost claim race,
a denied action, an illegal transition) are final answers and pass straight
through, whatever their message says.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TypeVar

from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from swaami.config import settings
from swaami.errors import FatalStoreError, SwaamiError, TransientStoreError
from swaami.ids import error_reference

logger = logging.getLogger("swaami.retry")

T = TypeVar("T")

DEFAULT_RETRYABLE_ERRORS: tuple[str, ...] = (
    "network",
    "timeout",
    "econnreset",
    "etimedout",
    "enotfound",
    "connection",
    "database is locked",
)

# Writes can also hit authorization-timing races (a session or policy that has
# not caught up with a just-committed change yet).
WRITE_RETRYABLE_ERRORS: tuple[str, ...] = (
    "violates row-level security",
    "jwt expired",
)


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 0.1
    backoff_multiplier: float = 2.0
    max_delay: float = 2.0
    jitter: float = 0.2
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS

    @classmethod
    def from_settings(cls, *, write: bool = False) -> RetryConfig:
        config = cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay_seconds,
            backoff_multiplier=settings.retry_backoff_multiplier,
            max_delay=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter,
        )
        return config.for_writes() if write else config

    def for_writes(self) -> RetryConfig:
        extra = tuple(e for e in WRITE_RETRYABLE_ERRORS if e not in self.retryable_errors)
        return replace(self, retryable_errors=self.retryable_errors + extra)


# Programming errors are bugs, whatever their message happens to mention.
NEVER_RETRY: tuple[type[BaseException], ...] = (
    LookupError,
    TypeError,
    AttributeError,
    ValueError,
    NameError,
    AssertionError,
)


def is_retryable(exc: BaseException, config: RetryConfig) -> bool:
    if isinstance(exc, TransientStoreError):
        return True
    if isinstance(exc, (SwaamiError, *NEVER_RETRY)):
        return False
    if isinstance(exc, TimeoutError | ConnectionError):
        return True
    text = str(exc).lower()
    return any(pattern.lower() in text for pattern in config.retryable_errors)


def compute_delay(
    attempt: int, config: RetryConfig, rand: Callable[[], float] = random.random
) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based)."""
    base = min(config.max_delay, config.initial_delay * config.backoff_multiplier ** (attempt - 1))
    jitter = base * config.jitter * (rand() * 2 - 1)
    return max(0.0, base + jitter)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    reconcile: Callable[[], Awaitable[T | None]] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    name: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds, fails for good, or attempts run out.

    ``reconcile`` runs before every retry. A previous attempt may have taken
    effect even though its caller saw a failure; when reconcile returns a
    value, that value is the result and the operation is not repeated.
    """
    config = config or RetryConfig.from_settings()
    attempt = 0
    while True:
        attempt += 1
        try:
            if attempt > 1 and reconcile is not None:
                settled = await reconcile()
                if settled is not None:
                    logger.info("%s already took effect, not repeating", name)
                    return settled
            return await operation()
        except Exception as exc:
            if not is_retryable(exc, config):
                raise
            if attempt >= config.max_attempts:
                logger.error("%s failed after %d attempts: %s", name, attempt, exc)
                raise
            delay = compute_delay(attempt, config)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.3fs: %s",
                name,
                attempt,
                config.max_attempts,
                delay,
                exc,
            )
            await sleep(delay)


def translate_store_error(exc: SQLAlchemyError) -> SwaamiError:
    """Map a driver/ORM error onto the transient/fatal split."""
    if isinstance(exc, DisconnectionError | PoolTimeoutError):
        return TransientStoreError(str(exc))
    if isinstance(exc, OperationalError) and is_retryable(exc, RetryConfig()):
        return TransientStoreError(str(exc))
    reference = error_reference()
    logger.error("Fatal store error [%s]: %s", reference, exc)
    return FatalStoreError(str(exc), reference=reference)


async def bounded(
    operation: Callable[[], Awaitable[T]],
    *,
    timeout: float | None = None,
    session=None,
) -> T:
    """One store call under a deadline, with store errors translated.

    On failure the session (if given) is rolled back so the next attempt
    starts from a clean transaction.
    """
    timeout = settings.store_timeout_seconds if timeout is None else timeout
    try:
        async with asyncio.timeout(timeout):
            return await operation()
    except TimeoutError as exc:
        if session is not None:
            await session.rollback()
        raise TransientStoreError(f"store call timed out after {timeout}s") from exc
    except SQLAlchemyError as exc:
        if session is not None:
            await session.rollback()
        raise translate_store_error(exc) from exc


async def store_call(
    operation: Callable[[], Awaitable[T]],
    *,
    session=None,
    write: bool = False,
    config: RetryConfig | None = None,
    reconcile: Callable[[], Awaitable[T | None]] | None = None,
    name: str = "store call",
) -> T:
    """Bounded, translated and retried store operation."""
    config = config or RetryConfig.from_settings(write=write)
    return await with_retry(
        lambda: bounded(operation, session=session),
        config,
        reconcile=reconcile,
        name=name,
    )
