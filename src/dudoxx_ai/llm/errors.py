"""
失败响应处理：非 2xx HTTP 响应 -> ApiCallError 家族。

说明：
- 调用方必须先读取响应 body（streaming 模式下 `await resp.aread()`），否则无法解析错误 JSON；
- 错误 body 形状：`{error:{message, type?, param?, code?}}`；解析失败时退回 HTTP reason phrase。
"""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from dudoxx_ai.core.error_classifier import parse_retry_after
from dudoxx_ai.core.errors import ApiCallError, RateLimitError, RequestTimeoutError
from dudoxx_ai.llm.schemas import ErrorBodySchema


def _parse_error_body(text: str) -> Optional[ErrorBodySchema]:
    """尝试按错误 schema 解析 body；失败返回 None。"""

    if not text:
        return None
    try:
        return ErrorBodySchema.model_validate(json.loads(text))
    except (ValueError, ValidationError):
        return None


def api_call_error_from_response(response: httpx.Response, *, request_body: Any = None) -> ApiCallError:
    """
    从已读取 body 的失败响应构造异常（不抛出）。

    映射：
    - 429 -> RateLimitError（retry_after 来自 `Retry-After` 头）
    - 408 -> RequestTimeoutError
    - 其它 -> ApiCallError（是否可重试按 status 推导）
    """

    status = int(response.status_code)
    try:
        body_text = response.text
    except httpx.ResponseNotRead:
        body_text = ""
    data = _parse_error_body(body_text)
    message = data.error.message if data is not None else (response.reason_phrase or f"HTTP {status}")

    try:
        url = str(response.request.url)
    except RuntimeError:
        url = ""

    kwargs = dict(
        url=url,
        request_body_values=request_body,
        status_code=status,
        response_headers=dict(response.headers),
        response_body=body_text,
        data=data,
    )
    if status == 429:
        return RateLimitError(message, retry_after=parse_retry_after(response.headers), **kwargs)
    if status == 408:
        return RequestTimeoutError(message, **kwargs)
    return ApiCallError(message, **kwargs)
