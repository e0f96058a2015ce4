"""Per-operation-class call gates: minimum spacing plus a fixed-window call cap."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from chat_sync.application.exceptions import ThrottledError
from chat_sync.application.ports.clock import Clock
from chat_sync.domain.value_objects.enums import OperationKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ThrottleLimits:
    min_interval: float
    max_calls: int
    window: float


@dataclass(slots=True)
class ThrottleState:
    last_call_at: float | None = None
    call_count_in_window: int = 0
    window_start_at: float | None = None


class ThrottleGate:
    """Fails fast when called too often; never queues.

    The window resets wall-clock style: once ``window`` seconds have passed since
    the first call of the current window, the count starts over.
    """

    def __init__(self, name: str, limits: ThrottleLimits, clock: Clock) -> None:
        self.name = name
        self.limits = limits
        self._clock = clock
        self._state = ThrottleState()

    @property
    def state(self) -> ThrottleState:
        return self._state

    def _roll_window(self, now: float) -> None:
        start = self._state.window_start_at
        if start is None or now - start >= self.limits.window:
            self._state.window_start_at = now
            self._state.call_count_in_window = 0

    def can_execute(self) -> bool:
        return self.time_until_next() <= 0

    def time_until_next(self) -> float:
        now = self._clock.monotonic()
        self._roll_window(now)
        wait = 0.0
        last = self._state.last_call_at
        if last is not None:
            wait = max(wait, self.limits.min_interval - (now - last))
        if self._state.call_count_in_window >= self.limits.max_calls:
            start = self._state.window_start_at or now
            wait = max(wait, self.limits.window - (now - start))
        return max(wait, 0.0)

    def _record_call(self) -> None:
        now = self._clock.monotonic()
        self._roll_window(now)
        self._state.last_call_at = now
        self._state.call_count_in_window += 1

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        wait = self.time_until_next()
        if wait > 0:
            raise ThrottledError(f"{self.name} throttled for {wait:.2f}s", retry_after=wait)
        self._record_call()
        return await operation()

    async def execute_when_ready(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """Wait out the gate, then execute. Scheduling only; failures are not retried here."""
        while True:
            wait = self.time_until_next()
            if wait <= 0:
                break
            logger.debug("%s gate closed, waiting %.2fs", self.name, wait)
            await sleep(wait)
        self._record_call()
        return await operation()

    def reset(self) -> None:
        self._state = ThrottleState()


class SessionThrottles:
    """One gate per operation class so a burst in one class cannot starve another."""

    def __init__(self, limits: dict[OperationKind, ThrottleLimits], clock: Clock) -> None:
        self._gates = {
            kind: ThrottleGate(kind.value, kind_limits, clock) for kind, kind_limits in limits.items()
        }

    def __getitem__(self, kind: OperationKind) -> ThrottleGate:
        return self._gates[kind]

    @property
    def join(self) -> ThrottleGate:
        return self._gates[OperationKind.JOIN]

    @property
    def leave(self) -> ThrottleGate:
        return self._gates[OperationKind.LEAVE]

    @property
    def send(self) -> ThrottleGate:
        return self._gates[OperationKind.SEND]

    @property
    def sync(self) -> ThrottleGate:
        return self._gates[OperationKind.SYNC]

    @property
    def read(self) -> ThrottleGate:
        return self._gates[OperationKind.READ]

    @property
    def typing(self) -> ThrottleGate:
        return self._gates[OperationKind.TYPING]
