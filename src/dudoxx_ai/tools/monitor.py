"""
Tool 执行监控：超时 + 重试/退避 + 指标记录。

说明：
- 监控器是显式构造的实例（provider 持有一个；也可自行构造并注入），不提供模块级全局单例；
- 多个并发执行共享同一实例：配置与历史由 `threading.Lock` 保护；
- 配置更新只影响之后开始的执行（每次执行开始时对配置取快照）；
- 已完成记录写入固定容量的环形缓冲（`deque(maxlen=...)`），超出后淘汰最旧的。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Deque, Dict, List, Literal, Optional, Union

from dudoxx_ai.config.loader import ToolExecutionConfig
from dudoxx_ai.core.error_classifier import ErrorType, classify_error
from dudoxx_ai.core.errors import ToolExecutionTimeoutError
from dudoxx_ai.core.retry import compute_backoff_delay
from dudoxx_ai.core.utils import generate_execution_id, now_ms
from dudoxx_ai.llm.protocol import CallWarning

logger = logging.getLogger(__name__)

ToolExecuteFn = Callable[[Any], Union[Any, Awaitable[Any]]]
ExecutionStatus = Literal["pending", "success", "error", "timeout"]

_NON_RETRYABLE = frozenset({ErrorType.AUTHENTICATION, ErrorType.VALIDATION})


@dataclass
class ToolExecutionMetrics:
    """
    单次 tool 执行的指标记录。

    字段：
    - execution_id：全局唯一
    - start_time / end_time：epoch 毫秒
    - retry_count：最后一次 attempt 的序号（0 表示首次即结束）
    - args / result：仅 `enable_metrics=True` 时记录
    """

    tool_name: str
    execution_id: str
    start_time: int
    status: ExecutionStatus = "pending"
    retry_count: int = 0
    end_time: Optional[int] = None
    duration_ms: Optional[int] = None
    error: Optional[BaseException] = None
    args: Any = None
    result: Any = None


@dataclass(frozen=True)
class ToolExecutionOutcome:
    """`execute_tool_with_monitoring` 的结果（result 与 error 二选一）。"""

    metrics: ToolExecutionMetrics
    result: Any = None
    error: Optional[BaseException] = None
    warnings: List[CallWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """是否成功。"""

        return self.error is None


@dataclass(frozen=True)
class ExecutionStats:
    """已完成执行的汇总统计（比率均为 0..1）。"""

    active_count: int
    total_completed: int
    success_rate: float
    average_duration_ms: float
    timeout_rate: float
    error_rate: float


class ToolExecutionMonitor:
    """
    tool 执行监控器。

    用法：
    - `await monitor.execute_tool_with_monitoring(name, args, execute)` -> ToolExecutionOutcome（不抛异常）
    - `monitor.wrap(name, execute)` -> 可直接 await 的函数（失败时抛出最终异常）
    """

    def __init__(self, config: Optional[ToolExecutionConfig] = None, **overrides: Any) -> None:
        """
        创建监控器。

        参数：
        - config：可选；缺省使用 `ToolExecutionConfig()` 的默认值
        - overrides：可选；在 config 基础上覆盖的字段（会被校验）
        """

        base = config or ToolExecutionConfig()
        if overrides:
            base = ToolExecutionConfig.model_validate({**base.model_dump(), **overrides})
        self._lock = threading.Lock()
        self._config = base
        self._active: Dict[str, ToolExecutionMetrics] = {}
        self._history: Deque[ToolExecutionMetrics] = deque(maxlen=base.history_capacity)

    def get_config(self) -> ToolExecutionConfig:
        """返回当前配置（不可变快照）。"""

        with self._lock:
            return self._config

    def update_config(self, **changes: Any) -> ToolExecutionConfig:
        """
        更新配置（校验后整体替换；last-write-wins）。

        说明：
        - 只影响之后开始的执行；
        - `history_capacity` 变小时保留最新的记录。
        """

        with self._lock:
            new_cfg = ToolExecutionConfig.model_validate({**self._config.model_dump(), **changes})
            if new_cfg.history_capacity != self._config.history_capacity:
                self._history = deque(self._history, maxlen=new_cfg.history_capacity)
            self._config = new_cfg
            return new_cfg

    async def execute_tool_with_monitoring(
        self, tool_name: str, args: Any, execute: ToolExecuteFn
    ) -> ToolExecutionOutcome:
        """
        在超时/重试/指标策略下执行 tool。

        参数：
        - tool_name：tool 名称（用于指标与告警）
        - args：传给 execute 的参数（原样）
        - execute：`execute(args)`；可以是协程函数或普通函数

        返回：
        - ToolExecutionOutcome；失败不会抛异常，而是体现在 `error` 与 `metrics.status`
        """

        cfg = self.get_config()
        metrics = ToolExecutionMetrics(
            tool_name=tool_name,
            execution_id=generate_execution_id(tool_name),
            start_time=now_ms(),
            args=args if cfg.enable_metrics else None,
        )
        warnings: List[CallWarning] = []
        with self._lock:
            self._active[metrics.execution_id] = metrics

        try:
            result = await self._run_with_retry(cfg, execute, args, metrics, warnings)
        except Exception as exc:
            metrics.status = "timeout" if isinstance(exc, ToolExecutionTimeoutError) else "error"
            metrics.error = exc
            self._complete(cfg, metrics)
            warnings.append(CallWarning(type="other", message=f"Tool execution failed: {tool_name} - {exc}"))
            logger.warning("tool execution failed: tool=%s status=%s error=%s", tool_name, metrics.status, exc)
            return ToolExecutionOutcome(metrics=metrics, error=exc, warnings=warnings)
        except BaseException as exc:
            # 取消等：收尾后原样抛出
            metrics.status = "error"
            metrics.error = exc
            self._complete(cfg, metrics)
            raise

        metrics.status = "success"
        metrics.result = result if cfg.enable_metrics else None
        self._complete(cfg, metrics)
        return ToolExecutionOutcome(metrics=metrics, result=result, warnings=warnings)

    def wrap(self, tool_name: str, execute: ToolExecuteFn) -> Callable[[Any], Awaitable[Any]]:
        """返回受监控的 `async (args) -> result`；失败时抛出最终异常。"""

        async def _wrapped(args: Any) -> Any:
            """受监控执行；失败抛出。"""

            outcome = await self.execute_tool_with_monitoring(tool_name, args, execute)
            if outcome.error is not None:
                raise outcome.error
            return outcome.result

        return _wrapped

    async def _invoke_once(self, cfg: ToolExecutionConfig, execute: ToolExecuteFn, args: Any, tool_name: str) -> Any:
        """
        执行一次 attempt，超时抛 ToolExecutionTimeoutError（不等待 execute 自然结束）。

        说明：
        - 普通函数在线程中执行（`asyncio.to_thread`），不阻塞事件循环，同样受超时约束；
        - 普通函数返回 awaitable 时，剩余时间内继续 await。
        """

        loop = asyncio.get_running_loop()
        deadline = loop.time() + cfg.timeout_ms / 1000.0
        try:
            if inspect.iscoroutinefunction(execute):
                return await asyncio.wait_for(execute(args), timeout=deadline - loop.time())
            value = await asyncio.wait_for(asyncio.to_thread(execute, args), timeout=deadline - loop.time())
            if inspect.isawaitable(value):
                value = await asyncio.wait_for(value, timeout=max(0.0, deadline - loop.time()))
            return value
        except asyncio.TimeoutError as exc:
            raise ToolExecutionTimeoutError(tool_name, cfg.timeout_ms) from exc

    async def _run_with_retry(
        self,
        cfg: ToolExecutionConfig,
        execute: ToolExecuteFn,
        args: Any,
        metrics: ToolExecutionMetrics,
        warnings: List[CallWarning],
    ) -> Any:
        """attempt 0..max_retries；authentication/validation 类失败不重试。"""

        name = metrics.tool_name
        attempt = 0
        while True:
            metrics.retry_count = attempt
            try:
                result = await self._invoke_once(cfg, execute, args, name)
            except Exception as exc:
                if isinstance(exc, ToolExecutionTimeoutError):
                    warnings.append(CallWarning(type="other", message=f"Tool {name} execution timeout ({cfg.timeout_ms}ms)"))
                if attempt >= cfg.max_retries or classify_error(exc).type in _NON_RETRYABLE:
                    raise
                delay = compute_backoff_delay(
                    attempt,
                    base_delay_sec=cfg.retry_delay_ms / 1000.0,
                    cap_delay_sec=cfg.max_retry_delay_ms / 1000.0,
                    jitter_ratio=0.1 if cfg.jitter else 0.0,
                )
                delay_ms = int(delay * 1000)
                warnings.append(
                    CallWarning(type="other", message=f"Tool {name} retry {attempt + 1}/{cfg.max_retries} after {delay_ms}ms delay")
                )
                logger.info("retrying tool %s after %s (attempt %d/%d)", name, type(exc).__name__, attempt + 1, cfg.max_retries)
                await asyncio.sleep(delay)
                attempt += 1
                continue
            if attempt > 0:
                warnings.append(CallWarning(type="other", message=f"Tool {name} succeeded after {attempt} retries"))
            return result

    def _complete(self, cfg: ToolExecutionConfig, metrics: ToolExecutionMetrics) -> None:
        """收尾：补全时间字段，从 in-flight 表移除并（按配置）写入历史。"""

        metrics.end_time = now_ms()
        metrics.duration_ms = metrics.end_time - metrics.start_time
        with self._lock:
            self._active.pop(metrics.execution_id, None)
            if cfg.enable_metrics:
                self._history.append(replace(metrics))

    def get_execution_stats(self) -> ExecutionStats:
        """汇总统计（历史为空时比率均为 0）。"""

        with self._lock:
            history = list(self._history)
            active = len(self._active)
        total = len(history)
        if total == 0:
            return ExecutionStats(active, 0, 0.0, 0.0, 0.0, 0.0)

        durations = [m.duration_ms for m in history if m.duration_ms is not None]
        return ExecutionStats(
            active_count=active,
            total_completed=total,
            success_rate=sum(1 for m in history if m.status == "success") / total,
            average_duration_ms=(sum(durations) / len(durations)) if durations else 0.0,
            timeout_rate=sum(1 for m in history if m.status == "timeout") / total,
            error_rate=sum(1 for m in history if m.status == "error") / total,
        )

    def get_tool_metrics(self, tool_name: str) -> List[ToolExecutionMetrics]:
        """返回某个 tool 的已完成记录（按完成顺序）。"""

        with self._lock:
            return [m for m in self._history if m.tool_name == tool_name]

    def active_executions(self) -> List[ToolExecutionMetrics]:
        """返回进行中的执行记录快照。"""

        with self._lock:
            return list(self._active.values())

    def clear_metrics(self) -> None:
        """清空历史（不影响进行中的执行）。"""

        with self._lock:
            self._history.clear()
