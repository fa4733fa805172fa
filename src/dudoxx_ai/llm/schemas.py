"""
wire 响应 schema（pydantic）。

覆盖两种形状：
- 非 streaming：完整 completion 对象（`choices[0].message.{content, tool_calls[]}` + `usage`）
- streaming：单个 SSE chunk（`choices[0].delta.{content, tool_calls[]}` + `finish_reason` + 可选 `usage`）

说明：
- schema 只做“边界校验”，未知字段忽略（provider 会不定期加字段）；
- tool call 的 id/name/arguments 故意宽松：类型不对时归一为 None，由 mapper/engine 决定修复或丢弃，
  而不是让整个响应校验失败。
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from dudoxx_ai.core.errors import MalformedStreamChunkError, ResponseValidationError


def _str_or_none(value: Any) -> Optional[str]:
    """非字符串值一律归一为 None。"""

    return value if isinstance(value, str) else None


class _WireModel(BaseModel):
    """wire schema 基类：忽略未知字段。"""

    model_config = ConfigDict(extra="ignore")


class UsageSchema(_WireModel):
    """token 用量（缺失字段视为 0）。"""

    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class FunctionCallSchema(_WireModel):
    """`tool_calls[].function`（完整形态）。"""

    name: Optional[str] = None
    arguments: Optional[str] = None

    @field_validator("name", "arguments", mode="before")
    @classmethod
    def _lenient(cls, value: Any) -> Optional[str]:
        """类型不符时归一为 None。"""

        return _str_or_none(value)


class ToolCallSchema(_WireModel):
    """非 streaming 响应中的单个 tool call（id 可缺失）。"""

    id: Optional[str] = None
    type: Optional[str] = "function"
    function: FunctionCallSchema = Field(default_factory=FunctionCallSchema)

    @field_validator("id", mode="before")
    @classmethod
    def _lenient_id(cls, value: Any) -> Optional[str]:
        """空串与非字符串 id 视为缺失。"""

        value = _str_or_none(value)
        return value or None


class MessageSchema(_WireModel):
    """`choices[].message`。"""

    role: Optional[str] = "assistant"
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCallSchema]] = None


class ChoiceSchema(_WireModel):
    """`choices[]`（非 streaming）。"""

    index: int = 0
    message: MessageSchema
    finish_reason: Optional[str] = None


class ChatCompletionResponse(_WireModel):
    """非 streaming completion 响应。"""

    id: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[ChoiceSchema]
    usage: Optional[UsageSchema] = None


class FunctionDeltaSchema(_WireModel):
    """`delta.tool_calls[].function`（分片形态；两个字段都可能缺失）。"""

    name: Optional[str] = None
    arguments: Optional[str] = None


class ToolCallDeltaSchema(_WireModel):
    """streaming 中的 tool call 分片。"""

    index: Optional[int] = None
    id: Optional[str] = None
    type: Optional[Literal["function"]] = None
    function: Optional[FunctionDeltaSchema] = None


class DeltaSchema(_WireModel):
    """`choices[].delta`。"""

    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCallDeltaSchema]] = None


class ChunkChoiceSchema(_WireModel):
    """`choices[]`（streaming）。"""

    index: int = 0
    delta: Optional[DeltaSchema] = None
    finish_reason: Optional[str] = None


class ChatCompletionChunk(_WireModel):
    """单个 SSE chunk。"""

    id: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[ChunkChoiceSchema] = Field(default_factory=list)
    usage: Optional[UsageSchema] = None


class ErrorBodySchema(_WireModel):
    """错误 body：`{error:{message, type?, param?, code?}}`。"""

    class Error(_WireModel):
        """错误详情。"""

        message: str
        type: Optional[str] = None
        param: Optional[Any] = None
        code: Optional[Any] = None

    error: Error


class EmbeddingItemSchema(_WireModel):
    """`data[]`（单个向量）。"""

    embedding: List[float]
    index: int = 0


class EmbeddingResponse(_WireModel):
    """`/embeddings` 响应。"""

    data: List[EmbeddingItemSchema]
    usage: Optional[UsageSchema] = None


T = TypeVar("T")


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """
    单个 chunk 的解析结果（成功或失败二选一）。

    字段：
    - success：是否解析成功
    - value：成功时的 schema 对象
    - error：失败时的 MalformedStreamChunkError
    - raw：原始 data 文本（用于排障与字节统计）
    """

    success: bool
    raw: str
    value: Optional[T] = None
    error: Optional[MalformedStreamChunkError] = None


def parse_chunk(data: str) -> ParseResult[ChatCompletionChunk]:
    """
    解析一条 SSE data payload。

    说明：
    - JSON 解析失败或 schema 不匹配都返回 `success=False`，不抛异常（由 engine 降级为 error 事件）。
    """

    try:
        obj = json.loads(data)
        value = ChatCompletionChunk.model_validate(obj)
    except (ValueError, ValidationError) as exc:
        return ParseResult(success=False, raw=data, error=MalformedStreamChunkError(raw=data, cause=exc))
    return ParseResult(success=True, raw=data, value=value)


def parse_completion(body: Any) -> ChatCompletionResponse:
    """
    校验非 streaming 响应 body。

    异常：
    - ResponseValidationError：body 不满足 schema
    """

    try:
        return ChatCompletionResponse.model_validate(body)
    except ValidationError as exc:
        raise ResponseValidationError(value=body, cause=exc) from exc


def parse_embedding_response(body: Any) -> EmbeddingResponse:
    """校验 `/embeddings` 响应 body（失败抛 ResponseValidationError）。"""

    try:
        return EmbeddingResponse.model_validate(body)
    except ValidationError as exc:
        raise ResponseValidationError(value=body, cause=exc) from exc
