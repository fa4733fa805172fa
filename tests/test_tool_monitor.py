from __future__ import annotations

import asyncio
import time
from typing import Any, List

import pytest

from dudoxx_ai.config.loader import ToolExecutionConfig
from dudoxx_ai.core.errors import ApiCallError, ToolExecutionTimeoutError
from dudoxx_ai.tools.monitor import ToolExecutionMonitor


def _fast_monitor(**overrides: Any) -> ToolExecutionMonitor:
    """无退避等待的监控器（测试用）。"""

    base = dict(retry_delay_ms=0, max_retry_delay_ms=0, timeout_ms=1_000)
    base.update(overrides)
    return ToolExecutionMonitor(**base)


def test_success_records_metrics() -> None:
    monitor = _fast_monitor()

    async def _execute(args: Any) -> Any:
        return {"echo": args["x"]}

    outcome = asyncio.run(monitor.execute_tool_with_monitoring("echo", {"x": 1}, _execute))

    assert outcome.ok
    assert outcome.result == {"echo": 1}
    assert outcome.metrics.status == "success"
    assert outcome.metrics.retry_count == 0
    assert outcome.metrics.duration_ms is not None and outcome.metrics.duration_ms >= 0
    assert outcome.warnings == []

    history = monitor.get_tool_metrics("echo")
    assert len(history) == 1
    assert history[0].args == {"x": 1}
    assert history[0].result == {"echo": 1}
    assert monitor.active_executions() == []


def test_sync_execute_is_supported() -> None:
    monitor = _fast_monitor()
    outcome = asyncio.run(monitor.execute_tool_with_monitoring("add", (2, 3), lambda a: a[0] + a[1]))
    assert outcome.result == 5


def test_slow_sync_tool_times_out_without_blocking_loop() -> None:
    monitor = _fast_monitor(timeout_ms=50, max_retries=0)

    def _execute(_args: Any) -> Any:
        time.sleep(0.5)
        return "late"

    async def _run() -> Any:
        ticks: List[int] = []

        async def _ticker() -> None:
            for _ in range(3):
                await asyncio.sleep(0.01)
                ticks.append(1)

        outcome, _ = await asyncio.gather(monitor.execute_tool_with_monitoring("blocking", {}, _execute), _ticker())
        return outcome, ticks

    outcome, ticks = asyncio.run(_run())

    assert isinstance(outcome.error, ToolExecutionTimeoutError)
    assert outcome.metrics.status == "timeout"
    assert outcome.metrics.duration_ms is not None and outcome.metrics.duration_ms < 400
    assert len(ticks) == 3


def test_cancelled_execution_is_finalized() -> None:
    monitor = _fast_monitor(timeout_ms=60_000)

    async def _execute(_args: Any) -> Any:
        await asyncio.sleep(10)

    async def _run() -> None:
        task = asyncio.create_task(monitor.execute_tool_with_monitoring("long", {}, _execute))
        await asyncio.sleep(0.01)
        assert len(monitor.active_executions()) == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run())

    assert monitor.active_executions() == []
    assert monitor.get_execution_stats().active_count == 0
    history = monitor.get_tool_metrics("long")
    assert len(history) == 1
    assert history[0].status == "error"
    assert history[0].end_time is not None


def test_always_failing_tool_retries_then_errors() -> None:
    monitor = _fast_monitor(max_retries=2)
    calls: List[int] = []

    async def _execute(_args: Any) -> Any:
        calls.append(1)
        raise ConnectionResetError("peer reset")

    outcome = asyncio.run(monitor.execute_tool_with_monitoring("flaky", {}, _execute))

    assert len(calls) == 3
    assert not outcome.ok
    assert isinstance(outcome.error, ConnectionResetError)
    assert outcome.metrics.status == "error"
    assert outcome.metrics.retry_count == 2
    messages = [w.message or "" for w in outcome.warnings]
    assert "Tool flaky retry 1/2 after 0ms delay" in messages
    assert "Tool flaky retry 2/2 after 0ms delay" in messages
    assert messages[-1] == "Tool execution failed: flaky - peer reset"


def test_success_after_retry_adds_warning() -> None:
    monitor = _fast_monitor(max_retries=3)
    state = {"n": 0}

    async def _execute(_args: Any) -> Any:
        state["n"] += 1
        if state["n"] < 3:
            raise ConnectionError("boom")
        return "ok"

    outcome = asyncio.run(monitor.execute_tool_with_monitoring("t", None, _execute))

    assert outcome.ok
    assert outcome.metrics.retry_count == 2
    assert "Tool t succeeded after 2 retries" in [w.message for w in outcome.warnings]


def test_authentication_failure_is_not_retried() -> None:
    monitor = _fast_monitor(max_retries=3)
    calls: List[int] = []

    async def _execute(_args: Any) -> Any:
        calls.append(1)
        raise ApiCallError("unauthorized", status_code=401)

    outcome = asyncio.run(monitor.execute_tool_with_monitoring("secure", {}, _execute))

    assert len(calls) == 1
    assert outcome.metrics.status == "error"
    assert outcome.metrics.retry_count == 0


def test_timeout_is_reported_quickly() -> None:
    monitor = _fast_monitor(timeout_ms=20, max_retries=0)

    async def _execute(_args: Any) -> Any:
        await asyncio.sleep(5)
        return "late"

    outcome = asyncio.run(monitor.execute_tool_with_monitoring("slow", {}, _execute))

    assert isinstance(outcome.error, ToolExecutionTimeoutError)
    assert outcome.error.timeout_ms == 20
    assert outcome.metrics.status == "timeout"
    assert outcome.metrics.duration_ms is not None and outcome.metrics.duration_ms < 2_000
    assert "Tool slow execution timeout (20ms)" in [w.message for w in outcome.warnings]


def test_execution_stats() -> None:
    monitor = _fast_monitor(max_retries=0)

    async def _ok(_args: Any) -> Any:
        return 1

    async def _bad(_args: Any) -> Any:
        raise ValueError("bad input")

    async def _run() -> None:
        await monitor.execute_tool_with_monitoring("a", {}, _ok)
        await monitor.execute_tool_with_monitoring("a", {}, _ok)
        await monitor.execute_tool_with_monitoring("b", {}, _ok)
        await monitor.execute_tool_with_monitoring("b", {}, _bad)

    asyncio.run(_run())
    stats = monitor.get_execution_stats()

    assert stats.total_completed == 4
    assert stats.active_count == 0
    assert stats.success_rate == pytest.approx(0.75)
    assert stats.error_rate == pytest.approx(0.25)
    assert stats.timeout_rate == 0.0
    assert len(monitor.get_tool_metrics("a")) == 2

    monitor.clear_metrics()
    assert monitor.get_execution_stats().total_completed == 0


def test_history_capacity_evicts_oldest() -> None:
    monitor = _fast_monitor(history_capacity=2)

    async def _run() -> None:
        for i in range(3):
            await monitor.execute_tool_with_monitoring(f"t{i}", {}, lambda _a: None)

    asyncio.run(_run())

    assert monitor.get_execution_stats().total_completed == 2
    assert monitor.get_tool_metrics("t0") == []
    assert len(monitor.get_tool_metrics("t2")) == 1


def test_metrics_disabled_skips_history() -> None:
    monitor = _fast_monitor(enable_metrics=False)
    outcome = asyncio.run(monitor.execute_tool_with_monitoring("t", {"secret": 1}, lambda _a: "r"))

    assert outcome.result == "r"
    assert outcome.metrics.args is None
    assert monitor.get_execution_stats().total_completed == 0


def test_update_config_validates_and_applies_to_later_runs() -> None:
    monitor = ToolExecutionMonitor(ToolExecutionConfig(timeout_ms=5_000))
    new_cfg = monitor.update_config(max_retries=0, history_capacity=1)

    assert new_cfg.max_retries == 0
    assert new_cfg.timeout_ms == 5_000
    assert monitor.get_config() is new_cfg

    with pytest.raises(ValueError):
        monitor.update_config(timeout_ms=0)
    assert monitor.get_config().timeout_ms == 5_000


def test_wrap_raises_final_error() -> None:
    monitor = _fast_monitor(max_retries=0)

    async def _bad(_args: Any) -> Any:
        raise ValueError("nope")

    wrapped = monitor.wrap("bad", _bad)
    with pytest.raises(ValueError):
        asyncio.run(wrapped({}))
