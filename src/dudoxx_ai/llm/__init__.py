"""
LLM 层（OpenAI-compatible chat.completions / embeddings）。

组成：
- 会话翻译（messages）与 tool 定义准备（prepare_tools）
- wire schema（schemas）、非 streaming 映射（response_mapper）
- streaming 解帧与归一化引擎（chat_sse）
- 模型：DudoxxChatLanguageModel / DudoxxEmbeddingModel
"""

from __future__ import annotations

from dudoxx_ai.llm.chat_model import ChatModelConfig, ChatStreamResult, DudoxxChatLanguageModel, GenerateResult
from dudoxx_ai.llm.chat_sse import (
    ChatStreamNormalizer,
    ErrorEvent,
    FinishEvent,
    ResponseMetadataEvent,
    SseLineDecoder,
    StreamEvent,
    StreamState,
    TextDeltaEvent,
    ToolCallDeltaEvent,
    iter_sse_data,
    iter_stream_events,
)
from dudoxx_ai.llm.embedding_model import DudoxxEmbeddingModel, EmbeddingModelConfig, EmbeddingSettings
from dudoxx_ai.llm.finish_reason import map_finish_reason
from dudoxx_ai.llm.messages import convert_to_chat_messages
from dudoxx_ai.llm.prepare_tools import PreparedTools, prepare_tools
from dudoxx_ai.llm.response_mapper import MappedCompletion, map_chat_completion
from dudoxx_ai.llm.response_metadata import ResponseMetadata, StreamingStats, get_response_metadata, get_streaming_metadata

__all__ = [
    "ChatModelConfig",
    "ChatStreamNormalizer",
    "ChatStreamResult",
    "DudoxxChatLanguageModel",
    "DudoxxEmbeddingModel",
    "EmbeddingModelConfig",
    "EmbeddingSettings",
    "ErrorEvent",
    "FinishEvent",
    "GenerateResult",
    "MappedCompletion",
    "PreparedTools",
    "ResponseMetadata",
    "ResponseMetadataEvent",
    "SseLineDecoder",
    "StreamEvent",
    "StreamState",
    "StreamingStats",
    "TextDeltaEvent",
    "ToolCallDeltaEvent",
    "convert_to_chat_messages",
    "get_response_metadata",
    "get_streaming_metadata",
    "iter_sse_data",
    "iter_stream_events",
    "map_chat_completion",
    "map_finish_reason",
    "prepare_tools",
]
