"""
重试与退避（指数退避 + 抖动）。

说明：
- 仅对 `classify_error(...).is_retryable=True` 的失败重试（或调用方显式提供的判定函数）；
- authentication / validation 类错误永不重试；
- rate_limit 携带的 `retry_after` 优先于指数退避计算。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from dudoxx_ai.core.error_classifier import ErrorType, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff_delay(
    attempt: int,
    *,
    base_delay_sec: float,
    cap_delay_sec: float,
    jitter_ratio: float = 0.0,
) -> float:
    """
    计算第 `attempt` 次重试前的等待秒数（不 sleep）。

    规则：
    - `base * 2**attempt`，上限 `cap`；
    - 抖动：在 `[0, delay * jitter_ratio]` 内均匀取值叠加，叠加后仍不超过 `cap`。
    """

    ratio = min(1.0, max(0.0, float(jitter_ratio)))
    delay = min(float(cap_delay_sec), float(base_delay_sec) * (2 ** max(0, int(attempt))))
    if ratio > 0:
        delay = min(float(cap_delay_sec), delay + random.uniform(0.0, delay * ratio))
    return delay


async def exponential_backoff(
    attempt: int,
    base_delay_sec: float = 1.0,
    cap_delay_sec: float = 30.0,
    jitter: bool = True,
) -> float:
    """
    等待指数退避时间并返回实际等待秒数。

    参数：
    - attempt：从 0 开始的重试序号
    - base_delay_sec / cap_delay_sec：基数与上限
    - jitter：是否叠加随机抖动（最多 +10%，仍受上限约束）
    """

    delay = compute_backoff_delay(
        attempt,
        base_delay_sec=base_delay_sec,
        cap_delay_sec=cap_delay_sec,
        jitter_ratio=0.1 if jitter else 0.0,
    )
    await asyncio.sleep(delay)
    return delay


def default_is_retryable(exc: BaseException) -> bool:
    """
    默认重试判定。

    - 异常对象显式携带 `is_retryable` 属性时以其为准；
    - 否则按 `classify_error` 的结果。
    """

    explicit = getattr(exc, "is_retryable", None)
    if isinstance(explicit, bool):
        return explicit
    return classify_error(exc).is_retryable


async def with_retry(
    fn: Callable[[], Union[T, Awaitable[T]]],
    max_retries: int = 3,
    is_retryable: Optional[Callable[[BaseException], bool]] = None,
    *,
    base_delay_sec: float = 1.0,
    cap_delay_sec: float = 30.0,
    jitter: bool = True,
) -> T:
    """
    以“首次 + 最多 max_retries 次重试”的方式调用 `fn`。

    参数：
    - fn：无参可调用对象（同步或异步）
    - max_retries：额外重试次数上限
    - is_retryable：可选；自定义重试判定（默认 `default_is_retryable`）

    异常：
    - 不可重试或重试耗尽时，原样抛出最后一次的异常
    """

    predicate = is_retryable or default_is_retryable
    attempt = 0
    while True:
        try:
            result: Any = fn()
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as exc:
            if attempt >= max_retries or not predicate(exc):
                raise
            classification = classify_error(exc)
            if classification.type == ErrorType.RATE_LIMIT and classification.retry_after is not None:
                delay = float(classification.retry_after)
                await asyncio.sleep(delay)
            else:
                delay = await exponential_backoff(attempt, base_delay_sec, cap_delay_sec, jitter)
            logger.info(
                "retrying after %s failure (attempt %d/%d, delay %.3fs)",
                classification.type.value,
                attempt + 1,
                max_retries,
                delay,
            )
            attempt += 1
