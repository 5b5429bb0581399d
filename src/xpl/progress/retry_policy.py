"""Bounded exponential backoff for transient storage failures.

The policy wraps a whole unit of work (open transaction, write, commit) and
re-runs it from scratch after a transient failure. The operation owns its
transaction and must roll back before the error leaves it.

Classification:
  - transient: ``OperationalError``, connection-invalidated DBAPI errors and
    PostgreSQL serialization/deadlock failures (SQLSTATE 40001, 40P01)
  - permanent: every other ``SQLAlchemyError``

Delay before retry ``n`` (1-based) is
``min(base_delay_ms * multiplier ** (n - 1), max_delay_ms)``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError

from xpl.config import Settings, get_settings
from xpl.progress.errors import PermanentStorageError, ProgressError, TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient(exc: BaseException) -> bool:
    """Whether a storage error is worth retrying."""
    if isinstance(exc, TransientStorageError):
        return True
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        return exc.connection_invalidated or _sqlstate(exc) in TRANSIENT_SQLSTATES
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration plus the executor that applies it."""

    max_attempts: int = 5
    base_delay_ms: int = 50
    multiplier: float = 2.0
    max_delay_ms: int = 1000
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            msg = "delays must be >= 0"
            raise ValueError(msg)
        if self.multiplier < 1:
            msg = "multiplier must be >= 1"
            raise ValueError(msg)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RetryPolicy:
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_ms=settings.retry_base_delay_ms,
            multiplier=settings.retry_multiplier,
            max_delay_ms=settings.retry_max_delay_ms,
        )

    def delay_ms(self, attempt: int) -> float:
        """Backoff in milliseconds after the given failed attempt (1-based)."""
        return min(self.base_delay_ms * self.multiplier ** (attempt - 1), self.max_delay_ms)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        context: dict[str, Any] | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds, fails permanently, or attempts run out."""
        context = context or {}
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except ProgressError as exc:
                if not isinstance(exc, TransientStorageError):
                    raise
                last_error: BaseException = exc
            except SQLAlchemyError as exc:
                if not is_transient(exc):
                    logger.error(
                        "Permanent storage failure in %s: %s",
                        operation_name,
                        exc,
                        extra=context,
                    )
                    raise PermanentStorageError(f"{operation_name} failed: {exc}") from exc
                last_error = exc

            if attempt >= self.max_attempts:
                logger.error(
                    "Giving up on %s after %d attempts",
                    operation_name,
                    attempt,
                    extra=context,
                )
                if isinstance(last_error, TransientStorageError):
                    raise last_error
                raise TransientStorageError(
                    f"{operation_name} failed after {attempt} attempts: {last_error}"
                ) from last_error

            delay = self.delay_ms(attempt)
            logger.warning(
                "Transient failure in %s (attempt %d/%d), retrying in %.0fms",
                operation_name,
                attempt,
                self.max_attempts,
                delay,
                extra=context,
            )
            await self.sleep(delay / 1000)


def storage_error(exc: SQLAlchemyError, operation_name: str) -> ProgressError:
    """Map a storage exception that will not be retried onto the error taxonomy."""
    if is_transient(exc):
        return TransientStorageError(f"{operation_name} failed: {exc}")
    return PermanentStorageError(f"{operation_name} failed: {exc}")
