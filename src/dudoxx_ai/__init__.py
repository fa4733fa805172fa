"""
dudoxx-ai（Python）：OpenAI-compatible chat / embedding provider。

说明：
- 入口：`create_dudoxx(...)` 返回 provider；`provider(model_id)` 创建 chat 模型；
- 核心：streaming 归一化引擎（有序 typed 事件 + tool call id 修复）、非 streaming 响应修复、
  tool 执行监控（超时/重试/指标）与错误分类；
- 配置：YAML overlay + pydantic 校验 + 环境变量（见 `dudoxx_ai.bootstrap`）。
"""

from __future__ import annotations

__version__ = "0.1.0"

from dudoxx_ai.bootstrap import validate_environment
from dudoxx_ai.config.loader import DudoxxConfig, ToolExecutionConfig, load_config
from dudoxx_ai.core.error_classifier import ErrorClassification, ErrorType, classify_error
from dudoxx_ai.core.errors import (
    ApiCallError,
    MissingRequiredEnvVarError,
    RateLimitError,
    RequestTimeoutError,
    ToolExecutionError,
    ToolExecutionTimeoutError,
    UnsupportedContentError,
    UnsupportedFunctionalityError,
)
from dudoxx_ai.core.retry import exponential_backoff, with_retry
from dudoxx_ai.llm.response_metadata import get_response_metadata, get_streaming_metadata
from dudoxx_ai.provider import DudoxxProvider, create_dudoxx
from dudoxx_ai.tools.monitor import ToolExecutionMonitor

__all__ = [
    "ApiCallError",
    "DudoxxConfig",
    "DudoxxProvider",
    "ErrorClassification",
    "ErrorType",
    "MissingRequiredEnvVarError",
    "RateLimitError",
    "RequestTimeoutError",
    "ToolExecutionConfig",
    "ToolExecutionError",
    "ToolExecutionMonitor",
    "ToolExecutionTimeoutError",
    "UnsupportedContentError",
    "UnsupportedFunctionalityError",
    "__version__",
    "classify_error",
    "create_dudoxx",
    "exponential_backoff",
    "get_response_metadata",
    "get_streaming_metadata",
    "load_config",
    "validate_environment",
    "with_retry",
]
