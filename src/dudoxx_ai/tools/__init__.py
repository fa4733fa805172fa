"""
Tool 执行监控（超时、重试、指标）。
"""

from __future__ import annotations

from dudoxx_ai.tools.monitor import (
    ExecutionStats,
    ToolExecutionMetrics,
    ToolExecutionMonitor,
    ToolExecutionOutcome,
)

__all__ = [
    "ExecutionStats",
    "ToolExecutionMetrics",
    "ToolExecutionMonitor",
    "ToolExecutionOutcome",
]
