"""
配置模型与加载入口。
"""

from __future__ import annotations

from dudoxx_ai.config.loader import (
    DudoxxConfig,
    DudoxxEmbeddingConfig,
    DudoxxLlmConfig,
    DudoxxModelsConfig,
    ToolExecutionConfig,
    load_config,
    load_config_dicts,
)

__all__ = [
    "DudoxxConfig",
    "DudoxxEmbeddingConfig",
    "DudoxxLlmConfig",
    "DudoxxModelsConfig",
    "ToolExecutionConfig",
    "load_config",
    "load_config_dicts",
]
