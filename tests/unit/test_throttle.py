from __future__ import annotations

import pytest

from chat_sync.application.exceptions import ThrottledError
from chat_sync.application.policies.throttle import SessionThrottles, ThrottleGate, ThrottleLimits
from chat_sync.domain.value_objects.enums import OperationKind
from tests.conftest import FakeClock, open_limits


async def _ok():
    return "ok"


@pytest.mark.asyncio
async def test_call_over_window_cap_is_throttled():
    clock = FakeClock()
    gate = ThrottleGate("send", ThrottleLimits(min_interval=0.0, max_calls=3, window=10.0), clock)
    for _ in range(3):
        assert await gate.execute(_ok) == "ok"
    with pytest.raises(ThrottledError) as info:
        await gate.execute(_ok)
    assert info.value.retry_after == pytest.approx(10.0)


@pytest.mark.asyncio
async def test_min_interval_between_calls():
    clock = FakeClock()
    gate = ThrottleGate("join", ThrottleLimits(min_interval=1.0, max_calls=100, window=60.0), clock)
    await gate.execute(_ok)
    assert gate.can_execute() is False
    assert gate.time_until_next() == pytest.approx(1.0)
    clock.advance(0.4)
    with pytest.raises(ThrottledError):
        await gate.execute(_ok)
    clock.advance(0.6)
    assert await gate.execute(_ok) == "ok"


@pytest.mark.asyncio
async def test_window_resets_after_elapsing():
    clock = FakeClock()
    gate = ThrottleGate("sync", ThrottleLimits(min_interval=0.0, max_calls=2, window=5.0), clock)
    await gate.execute(_ok)
    await gate.execute(_ok)
    assert gate.can_execute() is False
    clock.advance(5.0)
    assert gate.can_execute() is True
    await gate.execute(_ok)
    assert gate.state.call_count_in_window == 1


@pytest.mark.asyncio
async def test_rejected_call_does_not_run_operation():
    clock = FakeClock()
    gate = ThrottleGate("send", ThrottleLimits(min_interval=0.0, max_calls=1, window=10.0), clock)
    calls = []

    async def op():
        calls.append(1)

    await gate.execute(op)
    with pytest.raises(ThrottledError):
        await gate.execute(op)
    assert calls == [1]


@pytest.mark.asyncio
async def test_execute_when_ready_waits_out_the_gate():
    clock = FakeClock()
    gate = ThrottleGate("sync", ThrottleLimits(min_interval=2.0, max_calls=10, window=60.0), clock)
    slept = []

    async def sleep(delay):
        slept.append(delay)
        clock.advance(delay)

    await gate.execute(_ok)
    assert await gate.execute_when_ready(_ok, sleep=sleep) == "ok"
    assert slept == [pytest.approx(2.0)]


def test_session_gates_are_independent():
    clock = FakeClock()
    limits = open_limits()
    limits[OperationKind.SEND] = ThrottleLimits(min_interval=0.0, max_calls=0, window=60.0)
    throttles = SessionThrottles(limits, clock)
    assert throttles.send.can_execute() is False
    assert throttles.join.can_execute() is True
    assert throttles[OperationKind.JOIN] is throttles.join
