import asyncio
import threading
import time

import pytest

from core.deadline import DeadlineExceeded, run_with_deadline
from core.sweeper import PeriodicSweeper


def test_blocking_call_returns_its_result():
    assert asyncio.run(run_with_deadline(lambda x: x * 2, 21, timeout=1.0)) == 42


def test_coroutine_function_is_awaited():
    async def answer():
        return "ok"

    assert asyncio.run(run_with_deadline(answer, timeout=1.0)) == "ok"


def test_slow_call_exceeds_the_deadline():
    with pytest.raises(DeadlineExceeded) as info:
        asyncio.run(run_with_deadline(time.sleep, 0.3, timeout=0.05, operation="nap"))

    assert info.value.operation == "nap"
    assert info.value.timeout == 0.05
    assert isinstance(info.value, TimeoutError)


def test_errors_propagate_unchanged():
    def boom():
        raise ValueError("bad")

    with pytest.raises(ValueError, match="bad"):
        asyncio.run(run_with_deadline(boom, timeout=1.0))


def test_sweeper_runs_until_stopped():
    calls = threading.Event()
    sweeper = PeriodicSweeper("test", 0.01, lambda: calls.set() or 0)

    sweeper.start()
    assert sweeper.running
    assert calls.wait(timeout=1.0)

    sweeper.stop()
    assert not sweeper.running


def test_failing_sweep_does_not_kill_the_loop():
    count = {"n": 0}

    def flaky():
        count["n"] += 1
        raise RuntimeError("sweep failed")

    sweeper = PeriodicSweeper("flaky", 0.01, flaky)
    sweeper.start()
    deadline = time.time() + 1.0
    while count["n"] < 3 and time.time() < deadline:
        time.sleep(0.01)
    sweeper.stop()

    assert count["n"] >= 3
