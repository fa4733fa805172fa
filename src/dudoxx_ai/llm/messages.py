"""
会话翻译：host 侧 `ChatTurn` 序列 -> OpenAI-compatible wire messages。

约束：
- 纯函数：同一输入两次翻译得到字节级相同的输出（图片 base64 编码是确定性的）；
- assistant wire message 只能“content XOR tool_calls”：同一 turn 同时含文本与 tool 调用时，
  只发送 tool_calls（content=null），文本被丢弃。这是 wire 兼容性要求，保留并有回归用例；
- user turn 中的 file 附件直接失败（UnsupportedContentError）。
"""

from __future__ import annotations

import base64
from typing import Any, Dict, List

import httpx

from dudoxx_ai.core.errors import UnsupportedContentError
from dudoxx_ai.core.utils import json_dumps_compact
from dudoxx_ai.llm.protocol import ChatTurn, FilePart, ImagePart, Prompt, TextPart, ToolCallPart, ToolResultPart

DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"

WireMessage = Dict[str, Any]


def _image_url(part: ImagePart) -> str:
    """把 ImagePart 转为 `image_url` 字段值：URL 原样透传，否则编码为 data URI。"""

    if isinstance(part.image, httpx.URL):
        return str(part.image)
    if isinstance(part.image, (bytes, bytearray)):
        encoded = base64.b64encode(bytes(part.image)).decode("ascii")
    else:
        encoded = str(part.image)
    return f"data:{part.mime_type or DEFAULT_IMAGE_MIME_TYPE};base64,{encoded}"


def _system_content(turn: ChatTurn) -> str:
    """system turn 的文本（字符串原样；part 列表则拼接其中的文本）。"""

    if isinstance(turn.content, str):
        return turn.content
    return "".join(p.text for p in turn.content if isinstance(p, TextPart))


def _convert_user(turn: ChatTurn) -> WireMessage:
    """user turn -> `{role:user, content:[...]}`。"""

    parts = (TextPart(turn.content),) if isinstance(turn.content, str) else turn.content
    content: List[Dict[str, Any]] = []
    for part in parts:
        if isinstance(part, TextPart):
            content.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            content.append({"type": "image_url", "image_url": _image_url(part)})
        elif isinstance(part, FilePart):
            raise UnsupportedContentError("File content parts in user messages")
        else:
            raise UnsupportedContentError(f"Content part '{getattr(part, 'type', type(part).__name__)}' in user messages")
    return {"role": "user", "content": content}


def _convert_assistant(turn: ChatTurn) -> List[WireMessage]:
    """
    assistant turn -> 0 或 1 条 wire message。

    规则：
    - 有 tool 调用：`{content: None, tool_calls: [...]}`（同 turn 的文本被丢弃）
    - 仅文本：`{content: "<拼接文本>"}`（无 tool_calls 字段）
    - 都没有：不产出消息
    """

    parts = (TextPart(turn.content),) if isinstance(turn.content, str) else turn.content
    text = ""
    tool_calls: List[Dict[str, Any]] = []
    for part in parts:
        if isinstance(part, TextPart):
            text += part.text
        elif isinstance(part, ToolCallPart):
            tool_calls.append(
                {
                    "id": part.tool_call_id,
                    "type": "function",
                    "function": {"name": part.tool_name, "arguments": json_dumps_compact(part.args)},
                }
            )
        else:
            raise UnsupportedContentError(f"Content part '{getattr(part, 'type', type(part).__name__)}' in assistant messages")

    if tool_calls:
        return [{"role": "assistant", "content": None, "tool_calls": tool_calls}]
    if text:
        return [{"role": "assistant", "content": text}]
    return []


def _convert_tool(turn: ChatTurn) -> List[WireMessage]:
    """tool turn -> 每个 tool-result 一条 `{role:tool, content, tool_call_id}`。"""

    if isinstance(turn.content, str):
        raise UnsupportedContentError("Plain text content in tool messages")
    out: List[WireMessage] = []
    for part in turn.content:
        if not isinstance(part, ToolResultPart):
            raise UnsupportedContentError(f"Content part '{getattr(part, 'type', type(part).__name__)}' in tool messages")
        out.append({"role": "tool", "content": json_dumps_compact(part.result), "tool_call_id": part.tool_call_id})
    return out


def convert_to_chat_messages(prompt: Prompt) -> List[WireMessage]:
    """
    把 host 会话翻译为 wire messages（保持 turn 顺序）。

    异常：
    - UnsupportedContentError：file 附件或与 role 不匹配的 content part
    - ValueError：未知 role
    """

    messages: List[WireMessage] = []
    for turn in prompt:
        role = turn.role
        if role == "system":
            messages.append({"role": "system", "content": _system_content(turn)})
        elif role == "user":
            messages.append(_convert_user(turn))
        elif role == "assistant":
            messages.extend(_convert_assistant(turn))
        elif role == "tool":
            messages.extend(_convert_tool(turn))
        else:
            raise ValueError(f"Unsupported role: {role}")
    return messages
