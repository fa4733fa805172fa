"""
OpenAI-compatible `/chat/completions` 语言模型（do_generate / do_stream）。

说明：
- 网络层见 `dudoxx_ai.llm.transport`；可注入 `httpx.AsyncBaseTransport`（测试/自定义网络层）；
- 重试只发生在“连接阶段”（拿到 2xx 响应之前），且只针对 `classify_error(...).is_retryable` 的失败；
  streaming 一旦开始产出事件就不再重试，避免重复输出；
- 取消：取消消费 stream 的 task 或关闭迭代器，会中止进行中的请求并释放连接；已发出的事件保持有效。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

import httpx

from dudoxx_ai.config.loader import DudoxxLlmConfig
from dudoxx_ai.core.errors import UnsupportedFunctionalityError
from dudoxx_ai.core.utils import json_dumps_compact, now_ms
from dudoxx_ai.llm.chat_sse import ChatStreamNormalizer, SseLineDecoder, StreamEvent, StreamState
from dudoxx_ai.llm.messages import convert_to_chat_messages
from dudoxx_ai.llm.prepare_tools import prepare_tools
from dudoxx_ai.llm.protocol import (
    CallWarning,
    ChatCallOptions,
    ChatSettings,
    FinishReason,
    ObjectJsonMode,
    ObjectToolMode,
    RawCall,
    RegularMode,
    ToolCallResult,
    Usage,
)
from dudoxx_ai.llm.response_mapper import map_chat_completion
from dudoxx_ai.llm.response_metadata import ResponseMetadata, StreamingStats, get_response_metadata, get_streaming_metadata
from dudoxx_ai.llm.schemas import parse_completion
from dudoxx_ai.llm.transport import post_json, post_json_for_body

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatModelConfig:
    """
    模型运行配置（由 provider 构造）。

    字段：
    - provider：provider 标识（例如 `dudoxx.chat`）
    - base_url：API 根地址（不含 `/chat/completions`）
    - headers：每次请求携带的 header（含 Authorization）
    - llm：超时与重试策略
    - transport：可选；注入的 httpx transport
    """

    provider: str
    base_url: str
    headers: Dict[str, str] = field(default_factory=dict)
    llm: DudoxxLlmConfig = field(default_factory=DudoxxLlmConfig)
    transport: Optional[httpx.AsyncBaseTransport] = None


@dataclass(frozen=True)
class GenerateResult:
    """do_generate 的结果。"""

    text: str
    tool_calls: List[ToolCallResult]
    finish_reason: FinishReason
    usage: Usage
    raw_call: RawCall
    raw_response_headers: Dict[str, str]
    raw_response_body: Any
    request_body: str
    response: ResponseMetadata
    warnings: List[CallWarning] = field(default_factory=list)


class ChatStreamResult:
    """
    do_stream 的结果：异步事件迭代器 + 请求上下文。

    用法：
    - `async for ev in result: ...`（只能迭代一次）；
    - 不迭代时应调用 `await result.aclose()`（或使用 `async with`）释放连接。
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        response: httpx.Response,
        raw_call: RawCall,
        request_body: str,
        warnings: List[CallWarning],
        stats: StreamingStats,
    ) -> None:
        """绑定已建立的 streaming 响应（响应 body 尚未读取）。"""

        self._client = client
        self._response = response
        self._closed = False
        self._iterator: Optional[AsyncIterator[StreamEvent]] = None
        self.raw_call = raw_call
        self.request_body = request_body
        self.warnings = warnings
        self.response_headers: Dict[str, str] = dict(response.headers)
        self.stats = stats
        self.normalizer = ChatStreamNormalizer(stats=stats)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        """返回事件迭代器（重复调用返回同一个迭代器）。"""

        if self._iterator is None:
            self._iterator = self._iter_events()
        return self._iterator

    async def __aenter__(self) -> "ChatStreamResult":
        """async with 入口。"""

        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        """async with 出口：释放连接。"""

        await self.aclose()

    async def _iter_events(self) -> AsyncIterator[StreamEvent]:
        """读取 SSE 行并驱动归一化引擎；传输失败时引擎进入 Errored 并向上抛出。"""

        decoder = SseLineDecoder()
        try:
            async for line in self._response.aiter_lines():
                data = decoder.feed_line(line)
                if data is None:
                    continue
                for ev in self.normalizer.feed_data(data):
                    yield ev
            tail = decoder.flush()
            if tail is not None:
                for ev in self.normalizer.feed_data(tail):
                    yield ev
            for ev in self.normalizer.finish():
                yield ev
        finally:
            if self.normalizer.state != StreamState.FINISHED:
                self.normalizer.abort()
            await self.aclose()

    async def aclose(self) -> None:
        """关闭响应与 client（幂等）。"""

        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()

    def streaming_metadata(self) -> ResponseMetadata:
        """基于首个 chunk 与统计信息的 streaming 元数据。"""

        return get_streaming_metadata(self.normalizer.first_chunk, self.stats)


class DudoxxChatLanguageModel:
    """
    chat 语言模型。

    说明：
    - `default_object_generation_mode="json"`：结构化输出默认走 `response_format=json_object`；
    - 只支持 https 图片 URL 直传（`supports_url`）。
    """

    specification_version = "v1"
    default_object_generation_mode = "json"
    supports_image_urls = True

    def __init__(self, model_id: str, settings: Optional[ChatSettings] = None, config: Optional[ChatModelConfig] = None) -> None:
        """
        创建 chat 模型。

        参数：
        - model_id：wire `model` 字段
        - settings：模型级默认参数（调用级参数优先）
        - config：连接配置（provider 构造；必须提供 base_url）
        """

        if config is None:
            raise ValueError("config is required")
        self.model_id = model_id
        self.settings = settings or ChatSettings()
        self._config = config

    @property
    def provider(self) -> str:
        """provider 标识。"""

        return self._config.provider

    def supports_url(self, url: Union[str, httpx.URL]) -> bool:
        """只有 https URL 可以直接透传给远端。"""

        return httpx.URL(str(url)).scheme == "https"

    def _endpoint(self) -> str:
        """返回 `/chat/completions` 完整 URL。"""

        return f"{self._config.base_url.rstrip('/')}/chat/completions"

    def _build_args(self, options: ChatCallOptions) -> Tuple[Dict[str, Any], List[CallWarning]]:
        """
        构造请求 body 与 warnings。

        规则：
        - 调用级参数优先于 settings；值为 None 的字段不写入 body
        - `top_k` 不支持 -> unsupported-setting warning
        - `response_format={"type":"json"}` -> `{"type":"json_object"}`
        - `settings.dudoxx_params` 与 `provider_metadata["dudoxx"]` 依次展开进 body
        """

        warnings: List[CallWarning] = []
        if options.top_k is not None:
            warnings.append(CallWarning(type="unsupported-setting", setting="top_k"))

        s = self.settings
        candidates: Dict[str, Any] = {
            "model": self.model_id,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature if options.temperature is not None else s.temperature,
            "top_p": options.top_p if options.top_p is not None else s.top_p,
            "frequency_penalty": options.frequency_penalty if options.frequency_penalty is not None else s.frequency_penalty,
            "presence_penalty": options.presence_penalty if options.presence_penalty is not None else s.presence_penalty,
            "stop": list(options.stop_sequences) if options.stop_sequences else None,
            "seed": options.seed,
            "response_format": {"type": "json_object"}
            if (options.response_format or {}).get("type") == "json"
            else None,
        }
        args: Dict[str, Any] = {k: v for k, v in candidates.items() if v is not None}
        if s.dudoxx_params:
            args.update(s.dudoxx_params)
        provider_opts = (options.provider_metadata or {}).get("dudoxx")
        if provider_opts:
            args.update(provider_opts)
        args["messages"] = convert_to_chat_messages(options.prompt)

        mode = options.mode
        if isinstance(mode, RegularMode):
            prepared = prepare_tools(mode.tools, mode.tool_choice)
            if prepared.tools is not None:
                args["tools"] = prepared.tools
            if prepared.tool_choice is not None:
                args["tool_choice"] = prepared.tool_choice
            return args, warnings + prepared.warnings
        if isinstance(mode, ObjectJsonMode):
            args["response_format"] = {"type": "json_object"}
            return args, warnings
        if isinstance(mode, ObjectToolMode):
            fn: Dict[str, Any] = {"name": mode.tool.name}
            if mode.tool.description is not None:
                fn["description"] = mode.tool.description
            if mode.tool.parameters is not None:
                fn["parameters"] = mode.tool.parameters
            args["tools"] = [{"type": "function", "function": fn}]
            args["tool_choice"] = {"type": "function", "function": {"name": mode.tool.name}}
            return args, warnings
        raise UnsupportedFunctionalityError(f"Unsupported mode type: {getattr(mode, 'type', type(mode).__name__)}")

    def _headers(self, options: ChatCallOptions) -> Dict[str, str]:
        """合并 provider header 与调用级 header（后者覆盖前者；值为 None 的调用级 header 忽略）。"""

        headers = dict(self._config.headers)
        for k, v in (options.headers or {}).items():
            if v is not None:
                headers[k] = v
        return headers

    async def do_generate(self, options: ChatCallOptions) -> GenerateResult:
        """
        非 streaming 调用。

        异常：
        - ApiCallError 家族：HTTP 失败（重试耗尽或不可重试）
        - ResponseValidationError：响应 body 不满足 schema
        - UnsupportedContentError / UnsupportedFunctionalityError：请求构造失败
        """

        start = now_ms()
        args, warnings = self._build_args(options)
        logger.debug("chat completion request: model=%s stream=false warnings=%d", self.model_id, len(warnings))
        body, resp_headers, retries = await post_json_for_body(
            self._endpoint(), args, self._headers(options), llm=self._config.llm, transport=self._config.transport
        )

        parsed = parse_completion(body)
        mapped = map_chat_completion(parsed)
        raw_settings = {k: v for k, v in args.items() if k != "messages"}
        return GenerateResult(
            text=mapped.text,
            tool_calls=mapped.tool_calls,
            finish_reason=mapped.finish_reason,
            usage=mapped.usage,
            raw_call=RawCall(raw_prompt=args["messages"], raw_settings=raw_settings),
            raw_response_headers=dict(resp_headers),
            raw_response_body=body,
            request_body=json_dumps_compact(args),
            response=get_response_metadata(
                parsed,
                start_time=start,
                tool_calls_count=len(mapped.tool_calls),
                is_streaming=False,
                retry_count=retries,
            ),
            warnings=warnings,
        )

    async def do_stream(self, options: ChatCallOptions) -> ChatStreamResult:
        """
        streaming 调用：建立连接（含重试）后返回 ChatStreamResult，事件在迭代时产出。

        异常：
        - 与 do_generate 相同（连接阶段）；迭代期间的传输失败从迭代器抛出
        """

        args, warnings = self._build_args(options)
        body = dict(args, stream=True)
        logger.debug("chat completion request: model=%s stream=true warnings=%d", self.model_id, len(warnings))
        stats = StreamingStats.start()
        client, resp, _ = await post_json(
            self._endpoint(), body, self._headers(options), llm=self._config.llm, transport=self._config.transport, stream=True
        )
        raw_settings = {k: v for k, v in body.items() if k != "messages"}
        return ChatStreamResult(
            client=client,
            response=resp,
            raw_call=RawCall(raw_prompt=args["messages"], raw_settings=raw_settings),
            request_body=json_dumps_compact(body),
            warnings=warnings,
            stats=stats,
        )
