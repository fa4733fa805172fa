"""
HTTP 发送（httpx）：JSON POST + 连接阶段重试/退避。

说明：
- 每次 attempt 使用独立的 `httpx.AsyncClient`（可注入 transport）；
- 非 2xx 先读取 body 再抛 ApiCallError 家族，保证错误 JSON 可解析；
- 只重试 `classify_error(...).is_retryable` 的失败；rate_limit 的 `Retry-After` 优先于指数退避。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from dudoxx_ai.config.loader import DudoxxLlmConfig
from dudoxx_ai.core.error_classifier import ErrorType, classify_error
from dudoxx_ai.core.errors import ApiCallError, ResponseValidationError
from dudoxx_ai.core.retry import compute_backoff_delay
from dudoxx_ai.core.utils import json_dumps_compact
from dudoxx_ai.llm.errors import api_call_error_from_response

logger = logging.getLogger(__name__)


async def post_json(
    url: str,
    body: Dict[str, Any],
    headers: Dict[str, str],
    *,
    llm: DudoxxLlmConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    stream: bool = False,
) -> Tuple[httpx.AsyncClient, httpx.Response, int]:
    """
    发送 JSON POST（含重试），返回 (client, 2xx 响应, 重试次数)。

    参数：
    - stream：True 时不预读响应 body（SSE）
    - llm：超时与重试策略

    返回：
    - 成功时 client 与响应的关闭责任转移给调用方

    异常：
    - ApiCallError 家族 / httpx.TransportError：不可重试或重试耗尽
    """

    retry_cfg = llm.retry
    content = json_dumps_compact(body).encode("utf-8")
    request_headers = {"Content-Type": "application/json"}
    request_headers.update(headers)
    timeout = httpx.Timeout(llm.timeout_sec)

    attempt = 0
    while True:
        client = httpx.AsyncClient(timeout=timeout, transport=transport)
        handed_over = False
        try:
            request = client.build_request("POST", url, content=content, headers=request_headers)
            resp = await client.send(request, stream=stream)
            if resp.status_code >= 400:
                try:
                    await resp.aread()
                finally:
                    await resp.aclose()
                raise api_call_error_from_response(resp, request_body=body)
            handed_over = True
            return client, resp, attempt
        except (ApiCallError, httpx.TransportError) as exc:
            classification = classify_error(exc)
            if attempt >= retry_cfg.max_retries or not classification.is_retryable:
                raise
            if classification.type == ErrorType.RATE_LIMIT and classification.retry_after is not None:
                delay = float(classification.retry_after)
            else:
                delay = compute_backoff_delay(
                    attempt,
                    base_delay_sec=retry_cfg.base_delay_sec,
                    cap_delay_sec=retry_cfg.cap_delay_sec,
                    jitter_ratio=retry_cfg.jitter_ratio,
                )
            logger.warning(
                "request to %s failed (%s); retrying in %.3fs (attempt %d/%d)",
                url,
                classification.type.value,
                delay,
                attempt + 1,
                retry_cfg.max_retries,
            )
        finally:
            if not handed_over:
                await client.aclose()
        await asyncio.sleep(delay)
        attempt += 1


async def post_json_for_body(
    url: str,
    body: Dict[str, Any],
    headers: Dict[str, str],
    *,
    llm: DudoxxLlmConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[Any, httpx.Headers, int]:
    """
    非 streaming 便捷函数：返回 (JSON body, 响应 header, 重试次数)。

    异常：
    - ResponseValidationError：响应不是 JSON
    """

    client, resp, retries = await post_json(url, body, headers, llm=llm, transport=transport)
    try:
        return resp.json(), resp.headers, retries
    except ValueError as exc:
        raise ResponseValidationError(value=resp.text, cause=exc) from exc
    finally:
        await client.aclose()
