"""Keyed exponential backoff for retryable transport failures.

Delay for attempt ``n`` (0-indexed) is ``min(max_delay, base_delay * multiplier**n)``
plus up to ``jitter_ratio`` of itself, never subtracted, capped at ``max_delay``.
Delays for one key never decrease between attempts. Cancelling :meth:`run`
drops the key's state.
A rate-limited error that carries a server-provided delay uses that delay instead.

State is keyed by operation identity. One logical owner touches a key at a time,
so keys must include everything that distinguishes concurrent operations
(see :func:`operation_key`).
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from chat_sync.application.exceptions import RetryExhaustedError, error_kind
from chat_sync.domain.value_objects.enums import ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def operation_key(kind: str, conversation_id: str, *parts: object) -> str:
    """Full operation identity, e.g. ``send:c1:tmp-ab12``."""
    return ":".join([kind, conversation_id, *(str(p) for p in parts if p is not None)])


@dataclass(slots=True)
class RetryState:
    attempt: int = 0
    last_error: BaseException | None = None
    next_delay: float = 0.0


class BackoffController:
    def __init__(
        self,
        *,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 30.0,
        max_retries: int = 3,
        jitter_ratio: float = 0.1,
        rng: random.Random | None = None,
    ) -> None:
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.max_retries = max_retries
        self.jitter_ratio = jitter_ratio
        self._rng = rng or random.Random()
        self._states: dict[str, RetryState] = {}

    def should_retry(self, key: str, error: BaseException) -> bool:
        kind = error_kind(error)
        if not kind.retryable:
            self._states.pop(key, None)
            return False

        state = self._states.get(key)
        if state is None:
            state = RetryState()
            self._states[key] = state
        else:
            state.attempt += 1

        if state.attempt >= self.max_retries:
            logger.debug("Retry budget exhausted for %s after %d retries", key, state.attempt)
            self._states.pop(key, None)
            return False

        state.last_error = error
        delay = self._compute_delay(state.attempt, error, kind)
        if kind != ErrorKind.RATE_LIMITED:
            # never shorter than the previous wait for this key
            delay = min(self.max_delay, max(delay, state.next_delay))
        state.next_delay = delay
        return True

    def next_delay(self, key: str) -> float:
        state = self._states.get(key)
        if state is None:
            return self._compute_delay(0, None, ErrorKind.UNKNOWN)
        return state.next_delay

    def reset(self, key: str) -> None:
        self._states.pop(key, None)

    def clear(self) -> None:
        self._states.clear()

    def state(self, key: str) -> RetryState | None:
        return self._states.get(key)

    def _compute_delay(self, attempt: int, error: BaseException | None, kind: ErrorKind) -> float:
        if kind == ErrorKind.RATE_LIMITED:
            retry_after = getattr(error, "retry_after", None)
            if retry_after is not None and retry_after > 0:
                return float(retry_after)
        delay = min(self.max_delay, self.base_delay * self.multiplier**attempt)
        jitter = delay * self.jitter_ratio * self._rng.random()
        return min(self.max_delay, delay + jitter)

    async def run(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> T:
        """Run ``operation`` until it succeeds, fails terminally, or exhausts its budget."""
        try:
            return await self._run(key, operation, sleep)
        except asyncio.CancelledError:
            self.reset(key)
            raise

    async def _run(self, key: str, operation: Callable[[], Awaitable[T]], sleep: Sleep) -> T:
        while True:
            try:
                result = await operation()
            except Exception as exc:
                if self.should_retry(key, exc):
                    delay = self.next_delay(key)
                    logger.warning(
                        "Retryable failure for %s (%s), retrying in %.2fs",
                        key, error_kind(exc), delay,
                    )
                    await sleep(delay)
                    continue
                if error_kind(exc).retryable:
                    raise RetryExhaustedError(
                        f"Gave up on {key} after {self.max_retries} retries: {exc}",
                        last_error=exc,
                    ) from exc
                raise
            self.reset(key)
            return result
