"""
响应元数据（id / model / created）与 streaming 性能统计。

说明：
- `created` 为 epoch 秒，转换为 UTC `datetime`；
- 时钟统一使用 epoch 毫秒（`now_ms`），便于测试中 monkeypatch。
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from dudoxx_ai.core import utils


@dataclass(frozen=True)
class StreamingSummary:
    """streaming 汇总指标（由 StreamingStats 计算得出）。"""

    chunks_received: int
    bytes_received: int
    stream_duration_ms: int
    time_to_first_chunk_ms: Optional[int]
    average_chunk_size: float
    throughput_bytes_per_second: float


@dataclass(frozen=True)
class ResponseMetadata:
    """
    响应元数据。

    字段：
    - id / model_id / timestamp：来自响应 body（缺失为 None）
    - processing_time_ms：提供 start_time 时计算
    - tool_calls_count / streaming_enabled / retry_count / error_count：调用方提供时填充
    - streaming：仅 `get_streaming_metadata` 填充
    """

    id: Optional[str] = None
    model_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    processing_time_ms: Optional[int] = None
    tool_calls_count: Optional[int] = None
    streaming_enabled: Optional[bool] = None
    retry_count: Optional[int] = None
    error_count: Optional[int] = None
    streaming: Optional[StreamingSummary] = None


@dataclass
class StreamingStats:
    """
    单个 stream 的运行时统计（可变；由 stream 驱动方独占）。

    时间字段均为 epoch 毫秒。
    """

    stream_start_time: int
    chunks_received: int = 0
    bytes_received: int = 0
    first_chunk_time: Optional[int] = None
    last_chunk_time: Optional[int] = None

    @classmethod
    def start(cls) -> "StreamingStats":
        """以当前时间为起点创建统计对象。"""

        return cls(stream_start_time=utils.now_ms())

    def record_chunk(self, size_bytes: int) -> None:
        """记录收到一个 chunk（size_bytes 为 data payload 的 UTF-8 字节数）。"""

        now = utils.now_ms()
        if self.first_chunk_time is None:
            self.first_chunk_time = now
        self.last_chunk_time = now
        self.chunks_received += 1
        self.bytes_received += int(size_bytes)


def _field(response: Any, name: str) -> Any:
    """从 dict 或 schema 对象读取字段。"""

    if response is None:
        return None
    if isinstance(response, Mapping):
        return response.get(name)
    return getattr(response, name, None)


def get_response_metadata(
    response: Any,
    *,
    start_time: Optional[int] = None,
    tool_calls_count: Optional[int] = None,
    is_streaming: Optional[bool] = None,
    retry_count: Optional[int] = None,
    error_count: Optional[int] = None,
) -> ResponseMetadata:
    """
    从响应 body（dict 或 schema 对象）提取元数据。

    参数：
    - start_time：可选；请求开始的 epoch 毫秒，用于计算 processing_time_ms
    - 其它：可选；原样写入结果
    """

    created = _field(response, "created")
    timestamp = datetime.fromtimestamp(created, tz=timezone.utc) if isinstance(created, (int, float)) else None
    resp_id = _field(response, "id")
    model = _field(response, "model")
    return ResponseMetadata(
        id=resp_id if isinstance(resp_id, str) else None,
        model_id=model if isinstance(model, str) else None,
        timestamp=timestamp,
        processing_time_ms=(utils.now_ms() - start_time) if start_time else None,
        tool_calls_count=tool_calls_count,
        streaming_enabled=is_streaming,
        retry_count=retry_count,
        error_count=error_count,
    )


def get_streaming_metadata(response: Any, stats: Optional[StreamingStats] = None) -> ResponseMetadata:
    """在基础元数据上附加 streaming 汇总指标（stats 为空时只返回基础元数据）。"""

    base = get_response_metadata(response, is_streaming=True)
    if stats is None:
        return base

    duration_ms = utils.now_ms() - stats.stream_start_time
    ttfc = stats.first_chunk_time - stats.stream_start_time if stats.first_chunk_time is not None else None
    summary = StreamingSummary(
        chunks_received=stats.chunks_received,
        bytes_received=stats.bytes_received,
        stream_duration_ms=duration_ms,
        time_to_first_chunk_ms=ttfc,
        average_chunk_size=(stats.bytes_received / stats.chunks_received) if stats.chunks_received > 0 else 0.0,
        throughput_bytes_per_second=(stats.bytes_received / duration_ms * 1000) if duration_ms > 0 else 0.0,
    )
    return replace(base, streaming=summary)
