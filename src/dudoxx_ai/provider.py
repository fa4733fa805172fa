"""
Provider：根据配置创建 chat / embedding 模型，并持有一个 tool 执行监控器。

说明：
- base URL 与 API key 必须可解析（参数 > 配置 > 环境变量），否则在构造时抛 MissingRequiredEnvVarError；
- 不读取 `.env`（需要时先用 `dudoxx_ai.bootstrap.build_env` 得到 env 映射再传入）。
"""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Mapping, Optional

import httpx

from dudoxx_ai import __version__
from dudoxx_ai.bootstrap import (
    BASE_URL_VAR,
    EMBEDDING_MODEL_NAME_VAR,
    MODEL_NAME_VAR,
    REASONING_MODEL_NAME_VAR,
    config_from_env,
)
from dudoxx_ai.config.loader import DudoxxConfig
from dudoxx_ai.core.errors import MissingRequiredEnvVarError
from dudoxx_ai.llm.chat_model import ChatModelConfig, DudoxxChatLanguageModel
from dudoxx_ai.llm.embedding_model import DudoxxEmbeddingModel, EmbeddingModelConfig, EmbeddingSettings
from dudoxx_ai.llm.protocol import ChatSettings
from dudoxx_ai.tools.monitor import ToolExecutionMonitor

logger = logging.getLogger(__name__)

USER_AGENT = f"dudoxx-ai-python/{__version__}"


class DudoxxProvider:
    """
    模型工厂（可调用：`provider(model_id)` 等价于 `provider.chat(model_id)`）。

    属性：
    - config：校验后的配置
    - tool_monitor：本 provider 持有的 ToolExecutionMonitor（配置来自 `config.tool_execution`）
    """

    def __init__(
        self,
        *,
        config: DudoxxConfig,
        base_url: str,
        headers: Dict[str, str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        tool_monitor: Optional[ToolExecutionMonitor] = None,
    ) -> None:
        """由 `create_dudoxx` 调用；一般不直接构造。"""

        self.config = config
        self.base_url = base_url.rstrip("/")
        self._headers = dict(headers)
        self._transport = transport
        self.tool_monitor = tool_monitor or ToolExecutionMonitor(config.tool_execution)

    def __call__(self, model_id: Optional[str] = None, settings: Optional[ChatSettings] = None) -> DudoxxChatLanguageModel:
        """等价于 `chat(...)`。"""

        return self.chat(model_id, settings)

    def _model_id(self, model_id: Optional[str], configured: Optional[str], env_var: str) -> str:
        """显式 model_id 优先，其次配置；都没有时视为缺失必需配置。"""

        chosen = model_id or configured
        if not chosen:
            raise MissingRequiredEnvVarError(missing_env_vars=[env_var])
        return chosen

    def _chat_config(self) -> ChatModelConfig:
        """chat 模型连接配置。"""

        return ChatModelConfig(
            provider="dudoxx.chat",
            base_url=self.base_url,
            headers=dict(self._headers),
            llm=self.config.llm,
            transport=self._transport,
        )

    def chat(self, model_id: Optional[str] = None, settings: Optional[ChatSettings] = None) -> DudoxxChatLanguageModel:
        """创建 chat 模型（缺省使用 `config.models.chat`）。"""

        mid = self._model_id(model_id, self.config.models.chat, MODEL_NAME_VAR)
        return DudoxxChatLanguageModel(mid, settings, self._chat_config())

    language_model = chat

    def reasoning(self, model_id: Optional[str] = None, settings: Optional[ChatSettings] = None) -> DudoxxChatLanguageModel:
        """创建 reasoning chat 模型（缺省使用 `config.models.reasoning`）。"""

        mid = self._model_id(model_id, self.config.models.reasoning, REASONING_MODEL_NAME_VAR)
        return DudoxxChatLanguageModel(mid, settings, self._chat_config())

    def text_embedding_model(
        self, model_id: Optional[str] = None, settings: Optional[EmbeddingSettings] = None
    ) -> DudoxxEmbeddingModel:
        """创建 embedding 模型（缺省使用 `config.models.embedding` 与 `config.embedding`）。"""

        mid = self._model_id(model_id, self.config.models.embedding, EMBEDDING_MODEL_NAME_VAR)
        return DudoxxEmbeddingModel(
            mid,
            settings or EmbeddingSettings.from_config(self.config.embedding),
            EmbeddingModelConfig(
                provider="dudoxx.embedding",
                base_url=self.base_url,
                headers=dict(self._headers),
                llm=self.config.llm,
                transport=self._transport,
            ),
        )

    embedding = text_embedding_model
    text_embedding = text_embedding_model


def create_dudoxx(
    *,
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    config: Optional[DudoxxConfig] = None,
    env: Optional[Mapping[str, str]] = None,
) -> DudoxxProvider:
    """
    创建 provider。

    参数：
    - base_url / api_key：显式值优先；否则 base_url 取 `config.llm.base_url`，api_key 取 env[`config.llm.api_key_env`]
    - headers：自定义 header（最后合并，可覆盖默认 header）
    - transport：可选；注入的 httpx transport（测试/代理/自定义网络层）
    - config：可选；缺省由 `config_from_env(env)` 生成
    - env：环境映射（缺省 os.environ）

    异常：
    - MissingRequiredEnvVarError：base URL 或 API key 无法解析
    """

    effective_env: Mapping[str, str] = os.environ if env is None else env
    cfg = config or config_from_env(effective_env)

    resolved_url = base_url or cfg.llm.base_url
    resolved_key = api_key or (effective_env.get(cfg.llm.api_key_env) or "").strip()
    missing: List[str] = []
    if not resolved_key:
        missing.append(cfg.llm.api_key_env)
    if not resolved_url:
        missing.append(BASE_URL_VAR)
    if missing:
        raise MissingRequiredEnvVarError(missing_env_vars=missing)

    merged: Dict[str, str] = {"Authorization": f"Bearer {resolved_key}", "User-Agent": USER_AGENT}
    merged.update(cfg.llm.headers)
    merged.update({k: v for k, v in (headers or {}).items() if v is not None})
    logger.debug("created dudoxx provider: base_url=%s", resolved_url)
    return DudoxxProvider(config=cfg, base_url=str(resolved_url), headers=merged, transport=transport)

