"""OpenAI-compatible `/embeddings` 模型。"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Sequence

import httpx

from dudoxx_ai.config.loader import DudoxxEmbeddingConfig, DudoxxLlmConfig
from dudoxx_ai.core.errors import TooManyEmbeddingValuesForCallError
from dudoxx_ai.llm.protocol import EmbeddingResult
from dudoxx_ai.llm.schemas import parse_embedding_response
from dudoxx_ai.llm.transport import post_json_for_body

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingSettings:
    """embedding 模型参数（缺省值与 `DudoxxEmbeddingConfig` 一致）。"""

    max_embeddings_per_call: int = 32
    supports_parallel_calls: bool = True
    encoding_format: Literal["float", "base64"] = "float"
    dimensions: Optional[int] = None
    dudoxx_params: Optional[Dict[str, Any]] = None

    @classmethod
    def from_config(cls, cfg: DudoxxEmbeddingConfig, **overrides: Any) -> "EmbeddingSettings":
        """从配置构造；overrides 中非 None 的值优先。"""

        values: Dict[str, Any] = {
            "max_embeddings_per_call": cfg.max_embeddings_per_call,
            "supports_parallel_calls": cfg.supports_parallel_calls,
            "encoding_format": cfg.encoding_format,
            "dimensions": cfg.dimensions,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class EmbeddingModelConfig:
    """连接配置（由 provider 构造）。"""

    provider: str
    base_url: str
    headers: Dict[str, str] = field(default_factory=dict)
    llm: DudoxxLlmConfig = field(default_factory=DudoxxLlmConfig)
    transport: Optional[httpx.AsyncBaseTransport] = None


class DudoxxEmbeddingModel:
    """文本 embedding 模型。"""

    specification_version = "v1"

    def __init__(
        self, model_id: str, settings: Optional[EmbeddingSettings] = None, config: Optional[EmbeddingModelConfig] = None
    ) -> None:
        """
        创建 embedding 模型。

        参数：
        - model_id：wire `model` 字段
        - settings：批量上限、编码格式、维度等
        - config：连接配置（必须提供）
        """

        if config is None:
            raise ValueError("config is required")
        self.model_id = model_id
        self.settings = settings or EmbeddingSettings()
        self._config = config

    @property
    def provider(self) -> str:
        """provider 标识。"""

        return self._config.provider

    @property
    def max_embeddings_per_call(self) -> int:
        """单次请求允许的最大 values 数量。"""

        return self.settings.max_embeddings_per_call

    @property
    def supports_parallel_calls(self) -> bool:
        """是否允许调用方并发拆批请求。"""

        return self.settings.supports_parallel_calls

    async def do_embed(self, values: Sequence[str], headers: Optional[Dict[str, str]] = None) -> EmbeddingResult:
        """
        批量计算 embedding。

        异常：
        - TooManyEmbeddingValuesForCallError：values 数量超过上限（不发请求）
        - ApiCallError 家族 / ResponseValidationError：请求或响应失败
        """

        if len(values) > self.max_embeddings_per_call:
            raise TooManyEmbeddingValuesForCallError(
                provider=self.provider,
                model_id=self.model_id,
                max_embeddings_per_call=self.max_embeddings_per_call,
                values=values,
            )

        body: Dict[str, Any] = {
            "model": self.model_id,
            "input": list(values),
            "encoding_format": self.settings.encoding_format,
        }
        if self.settings.dimensions is not None:
            body["dimensions"] = self.settings.dimensions
        if self.settings.dudoxx_params:
            body.update(self.settings.dudoxx_params)

        merged_headers = dict(self._config.headers)
        merged_headers.update({k: v for k, v in (headers or {}).items() if v is not None})
        url = f"{self._config.base_url.rstrip('/')}/embeddings"
        logger.debug("embedding request: model=%s values=%d", self.model_id, len(values))
        raw, resp_headers, _ = await post_json_for_body(
            url, body, merged_headers, llm=self._config.llm, transport=self._config.transport
        )
        parsed = parse_embedding_response(raw)
        return EmbeddingResult(
            embeddings=[item.embedding for item in parsed.data],
            usage_tokens=parsed.usage.prompt_tokens if parsed.usage is not None else None,
            response_headers=dict(resp_headers),
        )
