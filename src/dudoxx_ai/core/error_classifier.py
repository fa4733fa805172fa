"""
错误分类（ErrorType / ErrorClassification / classify_error）。

说明：
- 把任意异常映射为封闭的分类集合，并给出是否建议重试；
- 该分类同时供 `with_retry` / tool 执行监控使用，也适合直接用于面向用户的错误提示；
- 纯函数：不做 I/O，不修改异常对象。
"""

from __future__ import annotations

import asyncio
import errno
import socket
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx

from dudoxx_ai.core.errors import ApiCallError, RateLimitError, RequestTimeoutError, ToolExecutionTimeoutError


class ErrorType(str, Enum):
    """稳定错误分类（机器可消费）。"""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    SERVER = "server"
    NETWORK = "network"
    UNKNOWN = "unknown"


_NETWORK_ERROR_CODES = frozenset({"ECONNRESET", "ECONNREFUSED", "ENOTFOUND", "EAI_AGAIN", "EPIPE", "ETIMEDOUT"})
_NETWORK_ERRNOS = frozenset({errno.ECONNRESET, errno.ECONNREFUSED, errno.EPIPE, errno.ECONNABORTED})


@dataclass(frozen=True)
class ErrorClassification:
    """
    分类结果。

    字段：
    - type：错误分类
    - is_retryable：是否建议重试
    - retry_after：可选；建议等待秒数（仅 rate_limit）
    - message：可读错误消息（不得包含 secrets）
    """

    type: ErrorType
    is_retryable: bool
    retry_after: Optional[float] = None
    message: str = ""

    def to_payload(self) -> Dict[str, Any]:
        """转换为稳定字段名的 dict（便于日志/事件）。"""

        out: Dict[str, Any] = {"type": self.type.value, "is_retryable": self.is_retryable, "message": self.message}
        if self.retry_after is not None:
            out["retry_after"] = self.retry_after
        return out


def parse_retry_after(headers: Optional[Mapping[str, str]]) -> Optional[float]:
    """
    从 `Retry-After` 头解析等待秒数。

    支持：
    - 整数/小数秒（`"60"`）
    - HTTP-date（与当前时间求差，负数按 None 处理）
    """

    if not headers:
        return None
    raw = None
    for k, v in headers.items():
        if str(k).lower() == "retry-after":
            raw = v
            break
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        sec = float(text)
    except ValueError:
        try:
            dt = parsedate_to_datetime(text)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        sec = (dt - datetime.now(timezone.utc)).total_seconds()
    if sec <= 0:
        return None
    return sec


def _classify_status(status: int, *, message: str, headers: Optional[Mapping[str, str]] = None) -> Optional[ErrorClassification]:
    """按 HTTP status 分类；无法归类的 status 返回 None。"""

    if status == 429:
        return ErrorClassification(ErrorType.RATE_LIMIT, True, retry_after=parse_retry_after(headers), message=message)
    if status == 408:
        return ErrorClassification(ErrorType.TIMEOUT, True, message=message)
    if status in (401, 403):
        return ErrorClassification(ErrorType.AUTHENTICATION, False, message=message)
    if status in (400, 422):
        return ErrorClassification(ErrorType.VALIDATION, False, message=message)
    if status >= 500:
        return ErrorClassification(ErrorType.SERVER, True, message=message)
    return None


def _is_network_error(exc: BaseException) -> bool:
    """判断是否为连接重置 / 无法解析主机等网络层错误。"""

    if isinstance(exc, (httpx.NetworkError, socket.gaierror, ConnectionError)):
        return True
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.upper() in _NETWORK_ERROR_CODES:
        return True
    err_no = getattr(exc, "errno", None)
    if isinstance(err_no, int) and err_no in _NETWORK_ERRNOS:
        return True
    return False


def classify_error(exc: BaseException) -> ErrorClassification:
    """
    将任意异常映射为 ErrorClassification。

    优先级：
    1) 显式类型：RateLimitError / 超时类（RequestTimeoutError、ToolExecutionTimeoutError、httpx/asyncio 超时）
    2) 带 HTTP status 的错误：ApiCallError、httpx.HTTPStatusError、任意暴露 `status_code` 的对象
    3) 网络层错误：连接重置、拒绝连接、DNS 解析失败
    4) 其它：unknown（不可重试）
    """

    message = str(exc)

    if isinstance(exc, RateLimitError):
        retry_after = exc.retry_after
        if retry_after is None:
            retry_after = parse_retry_after(exc.response_headers)
        return ErrorClassification(ErrorType.RATE_LIMIT, True, retry_after=retry_after, message=message)

    if isinstance(exc, (RequestTimeoutError, ToolExecutionTimeoutError, httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ErrorClassification(ErrorType.TIMEOUT, True, message=message)

    if isinstance(exc, ApiCallError) and exc.status_code is not None:
        hit = _classify_status(int(exc.status_code), message=message, headers=exc.response_headers)
        if hit is not None:
            return hit
        return ErrorClassification(ErrorType.UNKNOWN, False, message=message)

    if isinstance(exc, httpx.HTTPStatusError):
        code = int(exc.response.status_code)
        hit = _classify_status(code, message=f"HTTP {code}", headers=exc.response.headers)
        if hit is not None:
            return hit
        return ErrorClassification(ErrorType.UNKNOWN, False, message=f"HTTP {code}")

    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "statusCode", None)
    if isinstance(status, int) and not isinstance(status, bool):
        hit = _classify_status(status, message=message, headers=getattr(exc, "response_headers", None))
        if hit is not None:
            return hit

    if _is_network_error(exc):
        return ErrorClassification(ErrorType.NETWORK, True, message=message)

    return ErrorClassification(ErrorType.UNKNOWN, False, message=message)
