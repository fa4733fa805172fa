"""
非 streaming 响应映射：completion 对象 -> `{text, tool_calls, finish_reason, usage}`。

修复策略（单个 tool call 的问题不会让整个响应失败）：
- `function.name` 缺失/非字符串：丢弃该 call，记 warning 日志；
- `id` 缺失：生成修复 id（同一响应内唯一）；
- `function.arguments` 不是可解析 JSON：替换为 `"{}"`。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from dudoxx_ai.core.utils import generate_tool_call_id, is_valid_json
from dudoxx_ai.llm.finish_reason import map_finish_reason
from dudoxx_ai.llm.protocol import FinishReason, ToolCallResult, Usage
from dudoxx_ai.llm.schemas import ChatCompletionResponse, UsageSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappedCompletion:
    """映射结果。"""

    text: str
    tool_calls: List[ToolCallResult] = field(default_factory=list)
    finish_reason: FinishReason = FinishReason.UNKNOWN
    usage: Usage = field(default_factory=Usage)


def map_usage(usage: Optional[UsageSchema]) -> Usage:
    """wire usage -> Usage（缺失或 None 的计数一律为 0）。"""

    if usage is None:
        return Usage()
    return Usage(prompt_tokens=usage.prompt_tokens or 0, completion_tokens=usage.completion_tokens or 0)


def map_chat_completion(response: ChatCompletionResponse) -> MappedCompletion:
    """
    把已校验的 completion 对象映射为 MappedCompletion（只看 `choices[0]`）。

    返回：
    - MappedCompletion；`choices` 为空时 text 为空串、finish_reason 为 unknown
    """

    if not response.choices:
        return MappedCompletion(text="", usage=map_usage(response.usage))

    choice = response.choices[0]
    message = choice.message
    taken: Set[str] = {tc.id for tc in (message.tool_calls or []) if tc.id}

    tool_calls: List[ToolCallResult] = []
    for position, tc in enumerate(message.tool_calls or []):
        name = tc.function.name
        if not name:
            logger.warning("dropping tool call without function name (position=%d, id=%s)", position, tc.id)
            continue

        call_id = tc.id
        if not call_id:
            call_id = generate_tool_call_id(name, taken=taken)
            logger.info("repaired missing tool call id: %s", call_id)

        args = tc.function.arguments
        if args is None or not is_valid_json(args):
            logger.warning("tool call %s (%s) has malformed arguments; replaced with {}", call_id, name)
            args = "{}"

        tool_calls.append(ToolCallResult(tool_call_id=call_id, tool_name=name, args=args))

    return MappedCompletion(
        text=message.content or "",
        tool_calls=tool_calls,
        finish_reason=map_finish_reason(choice.finish_reason),
        usage=map_usage(response.usage),
    )
