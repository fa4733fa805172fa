"""
Provider 错误分类（异常类型）。

说明：
- 异常层级对应 `classify_error` 的分类口径（见 `dudoxx_ai.core.error_classifier`）；
- 单个 tool / 单个 stream chunk 的失败不走异常：前者变为 warning，后者变为 `error` 事件；
- 请求级失败（HTTP、鉴权、配置）以异常形式向调用方传播。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence


class DudoxxError(Exception):
    """Provider 内部错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """结构化问题对象（可序列化，用于日志与上层报告）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(DudoxxError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UnsupportedFunctionalityError(FrameworkError):
    """wire 协议不支持的功能（fatal；例如未知 tool_choice 类型）。"""

    def __init__(self, functionality: str) -> None:
        """创建不支持功能错误。

        参数：
        - `functionality`：不支持的功能描述（英文）
        """

        super().__init__(
            code="UNSUPPORTED_FUNCTIONALITY",
            message=f"'{functionality}' functionality not supported.",
            details={"functionality": functionality},
        )
        self.functionality = functionality


class UnsupportedContentError(UnsupportedFunctionalityError):
    """消息内容类型不被 wire 协议支持（例如 user 消息中的 file 附件）。"""


class MissingRequiredEnvVarError(ValueError):
    """
    缺失 required env var 的结构化异常（启动期配置错误，不属于可重试错误）。

    说明：
    - 只携带“缺失哪些 env var”，不得包含任何 env value（尤其是 API key）。
    """

    def __init__(self, *, missing_env_vars: Sequence[str], hint: Optional[str] = None) -> None:
        """
        初始化异常。

        参数：
        - missing_env_vars：缺失的 env var 名称列表（必须非空）
        - hint：可选；补充说明（例如 `.env` 示例）
        """

        if not missing_env_vars or not all(isinstance(x, str) and x.strip() for x in missing_env_vars):
            raise ValueError("missing_env_vars must be a non-empty list of strings")

        self.missing_env_vars = [str(x).strip() for x in missing_env_vars]
        self.hint = hint

        msg = "missing required env var"
        if len(self.missing_env_vars) == 1:
            msg = f"{msg}: {self.missing_env_vars[0]}"
        else:
            msg = f"{msg}s: {', '.join(self.missing_env_vars)}"
        if hint:
            msg = f"{msg}\n{hint}"
        super().__init__(msg)


def _default_is_retryable(status_code: Optional[int]) -> bool:
    """HTTP status 的默认重试口径：408/429 与 5xx。"""

    if status_code is None:
        return False
    return status_code in (408, 429) or status_code >= 500


class ApiCallError(DudoxxError):
    """
    HTTP API 调用失败（非 2xx 响应）。

    字段：
    - url / request_body_values：请求上下文（不得包含 API key）
    - status_code / response_headers / response_body：响应上下文
    - data：按错误 schema 解析后的 body（解析失败为 None）
    - is_retryable：是否建议重试（默认按 status 判断）
    """

    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        request_body_values: Any = None,
        status_code: Optional[int] = None,
        response_headers: Optional[Mapping[str, str]] = None,
        response_body: Optional[str] = None,
        data: Any = None,
        is_retryable: Optional[bool] = None,
    ) -> None:
        """创建 API 调用错误；`is_retryable=None` 时按 status_code 推导。"""

        super().__init__(message)
        self.message = message
        self.url = url
        self.request_body_values = request_body_values
        self.status_code = status_code
        self.response_headers: Dict[str, str] = dict(response_headers or {})
        self.response_body = response_body
        self.data = data
        self.is_retryable = _default_is_retryable(status_code) if is_retryable is None else bool(is_retryable)


class RateLimitError(ApiCallError):
    """限流（HTTP 429），可携带 `retry_after`（秒）。"""

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs: Any) -> None:
        """创建限流错误（status 固定为 429，始终可重试）。"""

        kwargs.setdefault("status_code", 429)
        kwargs["is_retryable"] = True
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class RequestTimeoutError(ApiCallError):
    """请求超时（HTTP 408 或客户端超时），始终可重试。"""

    def __init__(self, message: str, timeout_ms: Optional[int] = None, **kwargs: Any) -> None:
        """创建超时错误（status 固定为 408）。"""

        kwargs.setdefault("status_code", 408)
        kwargs["is_retryable"] = True
        super().__init__(message, **kwargs)
        self.timeout_ms = timeout_ms


class ResponseValidationError(DudoxxError):
    """非 streaming 响应 body 不满足 wire schema。"""

    def __init__(self, *, value: Any, cause: BaseException) -> None:
        """记录原始 value 与底层校验异常。"""

        super().__init__(f"Type validation failed: {cause}")
        self.value = value
        self.cause = cause


class MalformedStreamChunkError(DudoxxError):
    """
    单个 SSE chunk 解析失败（JSON 或 schema）。

    说明：
    - 该异常不会被 streaming 引擎抛出，而是放进 `ErrorEvent.error` 中随事件流下发（可恢复）。
    """

    def __init__(self, *, raw: str, cause: BaseException) -> None:
        """记录原始 data 文本与底层解析异常。"""

        super().__init__("Parse error occurred")
        self.raw = raw
        self.cause = cause


class ToolExecutionError(DudoxxError):
    """客户端 tool 回调执行失败。"""

    def __init__(self, message: str, tool_name: str, original_error: Optional[BaseException] = None) -> None:
        """创建 tool 执行错误。

        参数：
        - message：可读错误信息
        - tool_name：tool 名称
        - original_error：可选；底层异常
        """

        super().__init__(message)
        self.message = message
        self.tool_name = tool_name
        self.original_error = original_error


class ToolExecutionTimeoutError(ToolExecutionError):
    """客户端 tool 回调超时（可重试）。"""

    def __init__(self, tool_name: str, timeout_ms: int) -> None:
        """创建超时错误；message 固定包含 timeout 毫秒数。"""

        super().__init__(f"Tool execution timeout after {timeout_ms}ms", tool_name)
        self.timeout_ms = timeout_ms
        self.is_retryable = True


class TooManyEmbeddingValuesForCallError(DudoxxError):
    """单次 embedding 请求的 values 数量超过上限（发送前拒绝）。"""

    def __init__(self, *, provider: str, model_id: str, max_embeddings_per_call: int, values: Sequence[Any]) -> None:
        """记录上限与实际数量。"""

        super().__init__(
            f"Too many values for a single embedding call. The {provider} model \"{model_id}\" can only embed up to "
            f"{max_embeddings_per_call} values per call, but {len(values)} values were provided."
        )
        self.provider = provider
        self.model_id = model_id
        self.max_embeddings_per_call = max_embeddings_per_call
        self.values = list(values)
