from __future__ import annotations

import asyncio
from typing import Any, List

import pytest

from dudoxx_ai.core import retry as retry_mod
from dudoxx_ai.core.errors import ApiCallError, RateLimitError
from dudoxx_ai.core.retry import compute_backoff_delay, default_is_retryable, exponential_backoff, with_retry


@pytest.fixture()
def sleeps(monkeypatch: pytest.MonkeyPatch) -> List[float]:
    """拦截 asyncio.sleep，记录等待时长而不真正等待。"""

    recorded: List[float] = []

    async def _fake_sleep(delay: float) -> None:
        recorded.append(delay)

    monkeypatch.setattr(retry_mod.asyncio, "sleep", _fake_sleep)
    return recorded


def test_compute_backoff_delay_exponential_and_capped() -> None:
    assert compute_backoff_delay(0, base_delay_sec=1.0, cap_delay_sec=30.0) == 1.0
    assert compute_backoff_delay(1, base_delay_sec=1.0, cap_delay_sec=30.0) == 2.0
    assert compute_backoff_delay(3, base_delay_sec=1.0, cap_delay_sec=30.0) == 8.0
    assert compute_backoff_delay(10, base_delay_sec=1.0, cap_delay_sec=30.0) == 30.0


def test_compute_backoff_delay_jitter_bounded() -> None:
    for _ in range(50):
        d = compute_backoff_delay(2, base_delay_sec=1.0, cap_delay_sec=30.0, jitter_ratio=0.1)
        assert 4.0 <= d <= 4.4
    for _ in range(20):
        assert compute_backoff_delay(5, base_delay_sec=1.0, cap_delay_sec=30.0, jitter_ratio=0.5) <= 30.0


def test_exponential_backoff_sleeps_returned_delay(sleeps: List[float]) -> None:
    waited = asyncio.run(exponential_backoff(2, base_delay_sec=0.5, cap_delay_sec=10.0, jitter=False))
    assert waited == 2.0
    assert sleeps == [2.0]


def test_with_retry_succeeds_after_transient_failures(sleeps: List[float]) -> None:
    calls: List[int] = []

    async def _fn() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise ApiCallError("unavailable", status_code=503)
        return "done"

    result = asyncio.run(with_retry(_fn, max_retries=3, jitter=False))

    assert result == "done"
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_with_retry_does_not_retry_authentication(sleeps: List[float]) -> None:
    calls: List[int] = []

    def _fn() -> Any:
        calls.append(1)
        raise ApiCallError("unauthorized", status_code=401)

    with pytest.raises(ApiCallError):
        asyncio.run(with_retry(_fn, max_retries=3))
    assert len(calls) == 1
    assert sleeps == []


def test_with_retry_exhausts_and_raises_last_error(sleeps: List[float]) -> None:
    calls: List[int] = []

    def _fn() -> Any:
        calls.append(1)
        raise ConnectionResetError(f"reset {len(calls)}")

    with pytest.raises(ConnectionResetError, match="reset 3"):
        asyncio.run(with_retry(_fn, max_retries=2, jitter=False))
    assert len(calls) == 3


def test_with_retry_honours_retry_after(sleeps: List[float]) -> None:
    state = {"n": 0}

    def _fn() -> str:
        state["n"] += 1
        if state["n"] == 1:
            raise RateLimitError("slow down", retry_after=7)
        return "ok"

    assert asyncio.run(with_retry(_fn)) == "ok"
    assert sleeps == [7.0]


def test_custom_predicate_overrides_default(sleeps: List[float]) -> None:
    calls: List[int] = []

    def _fn() -> Any:
        calls.append(1)
        raise ApiCallError("internal", status_code=500)

    with pytest.raises(ApiCallError):
        asyncio.run(with_retry(_fn, max_retries=5, is_retryable=lambda _e: False))
    assert len(calls) == 1


def test_default_is_retryable_prefers_explicit_flag() -> None:
    assert default_is_retryable(ApiCallError("x", status_code=500, is_retryable=False)) is False
    assert default_is_retryable(ApiCallError("x", status_code=503)) is True
    assert default_is_retryable(RuntimeError("x")) is False
