"""
Tool 定义与 tool_choice 的 wire 化（校验 + 归一化）。

约束：
- 单个 tool 不合法时跳过并产出 warning，其余 tool 照常透传（不整体失败）；
- 缺省 description 为 `Tool: <name>`，缺省 parameters 为空 object schema；
- tool_choice 必须穷举：`auto|none|required|tool`，其它类型 fail-fast（UnsupportedFunctionalityError）。
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from dudoxx_ai.core.errors import UnsupportedFunctionalityError
from dudoxx_ai.llm.protocol import CallWarning, FunctionTool, ProviderDefinedTool, ToolChoice

logger = logging.getLogger(__name__)

TOOL_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

WireToolChoice = Union[str, Dict[str, Any]]


@dataclass(frozen=True)
class PreparedTools:
    """prepare_tools 的输出：wire tools（可能为 None）、wire tool_choice 与 warnings。"""

    tools: Optional[List[Dict[str, Any]]]
    tool_choice: Optional[WireToolChoice]
    warnings: List[CallWarning] = field(default_factory=list)


def _coerce_tool(raw: Any) -> Union[FunctionTool, ProviderDefinedTool, None]:
    """把 dict 形态的 tool 定义转为协议对象；无法识别时返回 None。"""

    if isinstance(raw, (FunctionTool, ProviderDefinedTool)):
        return raw
    if isinstance(raw, Mapping):
        kind = raw.get("type", "function")
        if kind == "provider-defined":
            return ProviderDefinedTool(id=str(raw.get("id") or ""), name=str(raw.get("name") or ""), args=dict(raw.get("args") or {}))
        if kind == "function":
            # OpenAI 形状 {"type":"function","function":{...}} 与扁平形状都接受
            fn = raw.get("function") if isinstance(raw.get("function"), Mapping) else raw
            return FunctionTool(name=fn.get("name"), description=fn.get("description"), parameters=fn.get("parameters"))
    return None


def _validate_parameters(tool: FunctionTool, warnings: List[CallWarning]) -> bool:
    """
    校验 parameters；返回 False 表示该 tool 应被跳过。

    - 不可 JSON 序列化或不是 object：跳过
    - `type` 不为 object：仅告警
    - `required` 不是数组 / `properties` 不是对象：告警
    """

    schema = tool.parameters
    if schema is None:
        return True
    if not isinstance(schema, Mapping):
        warnings.append(CallWarning(type="other", message=f"Invalid parameters schema for tool {tool.name}: parameters must be an object"))
        return False
    try:
        json.dumps(schema)
    except (TypeError, ValueError) as exc:
        warnings.append(CallWarning(type="other", message=f"Invalid parameters schema for tool {tool.name}: {exc}"))
        return False

    schema_type = schema.get("type")
    if schema_type and schema_type != "object":
        warnings.append(
            CallWarning(type="other", message=f"Tool {tool.name}: Root parameters type should be 'object', got '{schema_type}'")
        )
    if "required" in schema and not isinstance(schema.get("required"), list):
        warnings.append(CallWarning(type="other", message=f"Tool {tool.name}: 'required' must be an array"))
    if "properties" in schema and not isinstance(schema.get("properties"), Mapping):
        warnings.append(CallWarning(type="other", message=f"Tool {tool.name}: 'properties' must be an object"))
    return True


def _map_tool_choice(choice: ToolChoice) -> WireToolChoice:
    """ToolChoice -> wire tool_choice（穷举；未知类型 fail-fast）。"""

    kind = choice.type
    if kind in ("auto", "none", "required"):
        return kind
    if kind == "tool":
        if not choice.tool_name:
            raise UnsupportedFunctionalityError("Tool choice 'tool' without a tool name")
        return {"type": "function", "function": {"name": choice.tool_name}}
    raise UnsupportedFunctionalityError(f"Unsupported tool choice type: {kind}")


def prepare_tools(
    tools: Optional[Sequence[Any]],
    tool_choice: Optional[Union[ToolChoice, str]] = None,
) -> PreparedTools:
    """
    校验并 wire 化 tools 与 tool_choice。

    参数：
    - tools：tool 定义（FunctionTool / ProviderDefinedTool / dict）；空列表视为未提供
    - tool_choice：可选；ToolChoice 或字符串指令（`auto|none|required|tool:<name>`）

    返回：
    - PreparedTools；未提供 tools 时 tools/tool_choice 均为 None
    """

    warnings: List[CallWarning] = []
    if not tools:
        return PreparedTools(tools=None, tool_choice=None, warnings=warnings)

    wire_tools: List[Dict[str, Any]] = []
    for raw in tools:
        tool = _coerce_tool(raw)
        if tool is None:
            warnings.append(CallWarning(type="other", message=f"Invalid tool definition: {raw!r}"))
            continue
        if isinstance(tool, ProviderDefinedTool):
            warnings.append(CallWarning(type="unsupported-tool", tool=tool))
            continue

        name = tool.name
        if not isinstance(name, str) or not name:
            warnings.append(CallWarning(type="other", message=f"Invalid tool name: {name}. Tool names must be non-empty strings."))
            continue
        if not TOOL_NAME_RE.match(name):
            warnings.append(
                CallWarning(
                    type="other",
                    message=(
                        f"Invalid tool name format: {name}. Must start with letter and contain only "
                        "alphanumeric characters and underscores."
                    ),
                )
            )
            continue
        if not _validate_parameters(tool, warnings):
            continue

        wire_tools.append(
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": tool.description or f"Tool: {name}",
                    "parameters": dict(tool.parameters) if tool.parameters is not None else {"type": "object", "properties": {}},
                },
            }
        )

    for w in warnings:
        logger.warning("tool definition warning: %s", w.message or w.type)

    if tool_choice is None:
        return PreparedTools(tools=wire_tools, tool_choice=None, warnings=warnings)

    choice = ToolChoice.parse(tool_choice) if isinstance(tool_choice, str) else tool_choice
    return PreparedTools(tools=wire_tools, tool_choice=_map_tool_choice(choice), warnings=warnings)
