"""wire `finish_reason` -> host 侧 FinishReason。"""

from __future__ import annotations

from typing import Optional

from dudoxx_ai.llm.protocol import FinishReason

_FINISH_REASON_MAP = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "function_call": FinishReason.TOOL_CALLS,
    "tool_calls": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
}


def map_finish_reason(finish_reason: Optional[str]) -> FinishReason:
    """映射 finish_reason；None 或未知值返回 `unknown`。"""

    if not finish_reason:
        return FinishReason.UNKNOWN
    return _FINISH_REASON_MAP.get(finish_reason, FinishReason.UNKNOWN)
