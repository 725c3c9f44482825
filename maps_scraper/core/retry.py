"""Exponential backoff for navigation and other network-bound browser calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar, Union

T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    """Raised when every attempt of a labelled operation failed."""

    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{label} failed after {attempts} attempt(s): {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


class RetryPolicy:
    """Run an async operation, backing off ``min(base * 2**attempt, cap)`` between failures."""

    def __init__(
        self,
        *,
        base_delay: float = 1.0,
        max_delay: float = 8.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def delays(self, max_attempts: int) -> List[float]:
        """Backoff applied after each failed attempt except the last."""
        return [self.delay(attempt) for attempt in range(max(max_attempts - 1, 0))]

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        max_attempts: int,
        label: str,
    ) -> T:
        for attempt in range(max_attempts):
            try:
                return await operation()
            except Exception as exc:  # noqa: BLE001
                if attempt + 1 >= max_attempts:
                    self._logger.error("%s exhausted %s attempt(s): %s", label, max_attempts, exc)
                    raise RetryExhaustedError(label, max_attempts, exc) from exc
                wait = self.delay(attempt)
                self._logger.warning(
                    "%s failed (attempt %s/%s): %s; retrying in %.2fs",
                    label,
                    attempt + 1,
                    max_attempts,
                    exc,
                    wait,
                )
                await self._sleep(wait)
        raise ValueError("max_attempts must be at least 1")
