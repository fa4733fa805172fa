"""
LLM 协议：host 侧会话结构 / 调用参数 / 结果类型。

说明：
- host 侧（编排层）用这些类型描述一次调用；wire 侧（OpenAI-compatible JSON）由
  `messages.py` / `prepare_tools.py` / `chat_model.py` 负责转换；
- 会话 turn 与 content part 为不可变对象（frozen dataclass），构建后只被翻译器消费一次；
- tool 定义刻意保持“宽松类型”：格式错误的 tool 需要能被构造出来，由 `prepare_tools` 跳过并给出 warning。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

import httpx

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class TextPart:
    """文本片段。"""

    text: str
    type: Literal["text"] = field(default="text", init=False)


@dataclass(frozen=True)
class ImagePart:
    """
    图片片段。

    字段：
    - image：`httpx.URL`（原样透传 URL 字符串）、`bytes`（编码为 base64 data URI）、
      或已经是 base64 的 `str`
    - mime_type：可选；缺省按 `image/jpeg`
    """

    image: Union[bytes, str, httpx.URL]
    mime_type: Optional[str] = None
    type: Literal["image"] = field(default="image", init=False)


@dataclass(frozen=True)
class FilePart:
    """文件附件片段（wire 协议不支持；翻译时 fail-fast）。"""

    data: Union[bytes, str, httpx.URL]
    mime_type: str
    type: Literal["file"] = field(default="file", init=False)


@dataclass(frozen=True)
class ToolCallPart:
    """assistant 发起的 tool 调用（args 为任意 JSON 值）。"""

    tool_call_id: str
    tool_name: str
    args: Any
    type: Literal["tool-call"] = field(default="tool-call", init=False)


@dataclass(frozen=True)
class ToolResultPart:
    """tool 执行结果（result 为任意 JSON 值）。"""

    tool_call_id: str
    tool_name: str
    result: Any
    is_error: bool = False
    type: Literal["tool-result"] = field(default="tool-result", init=False)


ContentPart = Union[TextPart, ImagePart, FilePart, ToolCallPart, ToolResultPart]


@dataclass(frozen=True)
class ChatTurn:
    """
    会话中的一个 turn。

    字段：
    - role：system / user / assistant / tool
    - content：有序 content part 元组；system turn 也允许直接传入字符串
    """

    role: Role
    content: Union[str, Tuple[ContentPart, ...]]

    def __post_init__(self) -> None:
        """把 list 形式的 content 冻结为 tuple（保证不可变）。"""

        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))

    @classmethod
    def system(cls, text: str) -> "ChatTurn":
        """便捷构造：system turn。"""

        return cls(role="system", content=text)

    @classmethod
    def user(cls, *parts: Union[str, ContentPart]) -> "ChatTurn":
        """便捷构造：user turn（字符串自动包装为 TextPart）。"""

        return cls(role="user", content=tuple(TextPart(p) if isinstance(p, str) else p for p in parts))

    @classmethod
    def assistant(cls, *parts: Union[str, ContentPart]) -> "ChatTurn":
        """便捷构造：assistant turn（字符串自动包装为 TextPart）。"""

        return cls(role="assistant", content=tuple(TextPart(p) if isinstance(p, str) else p for p in parts))

    @classmethod
    def tool(cls, *results: ToolResultPart) -> "ChatTurn":
        """便捷构造：tool turn。"""

        return cls(role="tool", content=tuple(results))


Prompt = Sequence[ChatTurn]


@dataclass(frozen=True)
class CallWarning:
    """
    非致命告警（调用仍继续）。

    type：
    - `unsupported-setting`：某个调用参数被忽略（setting 字段给出名称）
    - `unsupported-tool`：provider-defined tool 不被支持（tool 字段给出对象）
    - `other`：其它（message 字段给出说明；例如 tool 定义被跳过）
    """

    type: Literal["unsupported-setting", "unsupported-tool", "other"]
    message: Optional[str] = None
    setting: Optional[str] = None
    tool: Any = None


@dataclass(frozen=True)
class FunctionTool:
    """客户端定义的 function tool（name/parameters 保持宽松类型，由 prepare_tools 校验）。"""

    name: Any
    description: Optional[str] = None
    parameters: Any = None
    type: Literal["function"] = field(default="function", init=False)


@dataclass(frozen=True)
class ProviderDefinedTool:
    """provider 预置 tool（本 provider 不支持；产出 unsupported-tool warning）。"""

    id: str
    name: str
    args: Mapping[str, Any] = field(default_factory=dict)
    type: Literal["provider-defined"] = field(default="provider-defined", init=False)


ToolDefinition = Union[FunctionTool, ProviderDefinedTool]


@dataclass(frozen=True)
class ToolChoice:
    """
    tool 选择指令。

    type：
    - `auto` / `none` / `required`：原样透传
    - `tool`：强制调用 `tool_name`
    """

    type: str
    tool_name: Optional[str] = None

    @classmethod
    def parse(cls, directive: str) -> "ToolChoice":
        """解析字符串指令：`auto|none|required|tool:<name>`（其它值保留原样，由 prepare_tools 拒绝）。"""

        text = str(directive or "").strip()
        if text.startswith("tool:"):
            return cls(type="tool", tool_name=text[len("tool:") :])
        return cls(type=text)


@dataclass(frozen=True)
class RegularMode:
    """普通调用：可选 tools + tool_choice。"""

    tools: Optional[Sequence[Any]] = None
    tool_choice: Optional[ToolChoice] = None
    type: Literal["regular"] = field(default="regular", init=False)


@dataclass(frozen=True)
class ObjectJsonMode:
    """结构化输出：强制 `response_format=json_object`。"""

    schema: Optional[Dict[str, Any]] = None
    name: Optional[str] = None
    description: Optional[str] = None
    type: Literal["object-json"] = field(default="object-json", init=False)


@dataclass(frozen=True)
class ObjectToolMode:
    """结构化输出：通过强制调用单个 tool 获得对象。"""

    tool: FunctionTool
    type: Literal["object-tool"] = field(default="object-tool", init=False)


CallMode = Union[RegularMode, ObjectJsonMode, ObjectToolMode]


@dataclass(frozen=True)
class ChatSettings:
    """
    模型级默认参数（调用级参数优先）。

    - temperature：0.0..2.0
    - top_p：0.0..1.0
    - frequency_penalty / presence_penalty：-2.0..2.0
    - dudoxx_params：provider 特有参数（原样合并进请求 body）
    """

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    dudoxx_params: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ChatCallOptions:
    """单次调用参数包。"""

    prompt: Prompt
    mode: CallMode = field(default_factory=RegularMode)
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop_sequences: Optional[List[str]] = None
    response_format: Optional[Dict[str, Any]] = None
    seed: Optional[int] = None
    provider_metadata: Optional[Dict[str, Dict[str, Any]]] = None
    headers: Optional[Dict[str, str]] = None


class FinishReason(str, Enum):
    """生成停止原因（host 侧口径）。"""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool-calls"
    CONTENT_FILTER = "content-filter"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Usage:
    """token 用量；0 表示“未知”（provider 未上报），不是错误。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """prompt + completion。"""

        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class ToolCallResult:
    """交给 host 的完整 tool 调用（id 必定非空；args 必定是可解析 JSON 文本）。"""

    tool_call_id: str
    tool_name: str
    args: str
    tool_call_type: Literal["function"] = "function"


@dataclass(frozen=True)
class RawCall:
    """原始请求拆分：messages 与其余参数。"""

    raw_prompt: Any
    raw_settings: Dict[str, Any]


@dataclass(frozen=True)
class EmbeddingResult:
    """embedding 调用结果。"""

    embeddings: List[List[float]]
    usage_tokens: Optional[int] = None
    response_headers: Dict[str, str] = field(default_factory=dict)
