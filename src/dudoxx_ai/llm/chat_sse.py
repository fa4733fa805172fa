"""
Chat Completions streaming：SSE 解帧 + 事件归一化引擎。

两层：
- `SseLineDecoder`：把 `text/event-stream` 的行序列解帧为 data payload（`data:` 行、空行分发、`:` 注释）；
- `ChatStreamNormalizer`：消费 payload（或已解析的 ParseResult），产出严格有序的 typed 事件。

事件顺序约束：
- `response-metadata` 恰好一次且总是第一个事件（懒发出：在任意其它事件之前补发）；
- `finish` 恰好一次且总是最后一个事件（只在 `finish()` 中发出）；
- `text-delta` 与 `tool-call-delta` 严格按 chunk 到达顺序发出，不缓冲、不重排。

容错：
- 单个 chunk 解析失败 -> `error` 事件（MalformedStreamChunkError），stream 继续；
- tool call 缺 id -> 生成修复 id，并按 wire 的 `index` 在后续分片中复用同一个 id；
- tool call 既无可用 name 也无 arguments -> 跳过并记录 warning。

已知限制：
- 分片拼接依赖 wire 的 `index`；provider 省略 `index` 时按“已见过的 id -> 其 index”，否则按分片在数组中的位置归属。
  provider 若重排 tool call，参数分片可能被错误归属（不做启发式猜测）。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Literal, Optional, Set, Union

from dudoxx_ai.core.errors import MalformedStreamChunkError
from dudoxx_ai.core.utils import generate_tool_call_id
from dudoxx_ai.llm.finish_reason import map_finish_reason
from dudoxx_ai.llm.protocol import FinishReason, Usage
from dudoxx_ai.llm.response_mapper import map_usage
from dudoxx_ai.llm.response_metadata import StreamingStats, get_response_metadata
from dudoxx_ai.llm.schemas import ChatCompletionChunk, ParseResult, ToolCallDeltaSchema, parse_chunk

logger = logging.getLogger(__name__)

DONE_SENTINELS = ("[DONE]", "DONE")


@dataclass(frozen=True)
class ResponseMetadataEvent:
    """首个事件：响应 id / model / created（首个 chunk 解析失败或无 chunk 时字段为 None）。"""

    id: Optional[str] = None
    model_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    type: Literal["response-metadata"] = field(default="response-metadata", init=False)


@dataclass(frozen=True)
class TextDeltaEvent:
    """assistant 文本增量。"""

    text_delta: str
    type: Literal["text-delta"] = field(default="text-delta", init=False)


@dataclass(frozen=True)
class ToolCallDeltaEvent:
    """
    tool call 增量。

    说明：
    - 同一 call 的所有增量携带相同的 `tool_call_id`；
    - 携带 name 的首个增量 `args_text_delta` 为空串；与名称同 chunk 到达的参数分片作为紧随其后的独立增量下发，
      不在 name 增量中重复携带，因此把同一 id 的 `args_text_delta` 依次拼接即得到完整 arguments 文本。
    """

    tool_call_id: str
    tool_name: str
    args_text_delta: str
    tool_call_type: Literal["function"] = "function"
    type: Literal["tool-call-delta"] = field(default="tool-call-delta", init=False)


@dataclass(frozen=True)
class ErrorEvent:
    """可恢复错误（单个 chunk 解析失败）；stream 继续。"""

    error: BaseException
    type: Literal["error"] = field(default="error", init=False)


@dataclass(frozen=True)
class FinishEvent:
    """
    最后一个事件。

    说明：
    - usage 在 provider 未上报时为 0/0（该 provider 的 streaming 通常不上报 usage，0 是“未知”而非错误）。
    """

    finish_reason: FinishReason
    usage: Usage
    type: Literal["finish"] = field(default="finish", init=False)


StreamEvent = Union[ResponseMetadataEvent, TextDeltaEvent, ToolCallDeltaEvent, ErrorEvent, FinishEvent]


class StreamState(str, Enum):
    """引擎状态：Idle -> Streaming -> {Finished, Errored}。"""

    IDLE = "idle"
    STREAMING = "streaming"
    FINISHED = "finished"
    ERRORED = "errored"


class SseLineDecoder:
    """
    `text/event-stream` 行解帧器。

    规则：
    - `data:` 行（冒号后单个空格可选）累积；多行 data 以 `\\n` 连接
    - 空行：分发当前事件的 data（若有）
    - `:` 开头：注释，忽略；`event:` / `id:` / `retry:` 等其它字段忽略
    """

    def __init__(self) -> None:
        """初始化空的 data 缓冲。"""

        self._data_lines: List[str] = []

    def feed_line(self, line: str) -> Optional[str]:
        """喂入一行（不含换行符）；遇到事件边界时返回 data payload，否则返回 None。"""

        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, sep, value = line.partition(":")
        if not sep:
            value = ""
        elif value.startswith(" "):
            value = value[1:]
        if name == "data":
            self._data_lines.append(value)
        return None

    def flush(self) -> Optional[str]:
        """EOF 时分发尚未遇到空行的最后一个事件。"""

        return self._dispatch()

    def _dispatch(self) -> Optional[str]:
        """取出并清空当前 data 缓冲。"""

        if not self._data_lines:
            return None
        data = "\n".join(self._data_lines)
        self._data_lines = []
        return data


@dataclass
class _ToolCallState:
    """单个 tool call（按 wire index 归属）的拼接状态。"""

    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


class ChatStreamNormalizer:
    """
    streaming 归一化引擎（单个 stream 独占；不可跨 stream 复用）。

    用法：
    - 每条 SSE data payload 调用 `feed_data(data)`（或已解析结果调用 `feed(result)`），得到 0..N 个事件；
    - stream 结束（`[DONE]` 或 EOF）后调用 `finish()`，得到收尾事件（含唯一的 finish 事件）；
    - 传输层不可恢复失败时调用 `abort()`（进入 Errored，不再发出 finish）。
    """

    def __init__(self, *, stats: Optional[StreamingStats] = None) -> None:
        """
        初始化一次 stream 的累积状态。

        参数：
        - stats：可选；每个 payload 到达时记录 chunk 数与字节数
        """

        self._state = StreamState.IDLE
        self._stats = stats
        self._chunk_index = 0
        self._metadata_sent = False
        self._done_seen = False
        self._finish_reason = FinishReason.UNKNOWN
        self._usage = Usage()
        self._tool_calls: Dict[int, _ToolCallState] = {}
        self._index_by_id: Dict[str, int] = {}
        self._taken_ids: Set[str] = set()
        self.warnings: List[str] = []
        self.first_chunk: Optional[ChatCompletionChunk] = None

    @property
    def state(self) -> StreamState:
        """当前状态。"""

        return self._state

    @property
    def chunk_index(self) -> int:
        """已成功解析的 chunk 数。"""

        return self._chunk_index

    @property
    def finish_reason(self) -> FinishReason:
        """当前记录的 finish_reason（尚未收到时为 unknown）。"""

        return self._finish_reason

    @property
    def usage(self) -> Usage:
        """当前 usage 快照（last-write-wins）。"""

        return self._usage

    def feed_data(self, data: str) -> List[StreamEvent]:
        """
        处理一条 SSE data payload。

        说明：
        - `[DONE]` / `DONE`：标记终止哨兵，不产出事件（收尾在 `finish()`）；哨兵之后的 payload 被忽略
        - 空 payload 忽略
        """

        self._ensure_open()
        text = (data or "").strip()
        if not text or self._done_seen:
            return []
        if text in DONE_SENTINELS:
            self._done_seen = True
            return []
        return self.feed(parse_chunk(text))

    def feed(self, result: ParseResult[ChatCompletionChunk]) -> List[StreamEvent]:
        """
        处理一个已解析的 chunk（成功或失败）。

        异常：
        - RuntimeError：在 `finish()` / `abort()` 之后继续喂入
        """

        self._ensure_open()
        self._state = StreamState.STREAMING
        if self._stats is not None:
            self._stats.record_chunk(len(result.raw.encode("utf-8")))

        out: List[StreamEvent] = []
        if not result.success or result.value is None:
            self._emit_metadata(out, None)
            error = result.error or MalformedStreamChunkError(raw=result.raw, cause=ValueError("empty chunk"))
            logger.warning("malformed stream chunk skipped: %s", error.cause)
            out.append(ErrorEvent(error=error))
            return out

        chunk = result.value
        self._chunk_index += 1
        if self.first_chunk is None:
            self.first_chunk = chunk
        self._emit_metadata(out, chunk)

        if chunk.usage is not None:
            self._usage = map_usage(chunk.usage)

        if not chunk.choices:
            return out
        choice = chunk.choices[0]
        if choice.finish_reason is not None:
            self._finish_reason = map_finish_reason(choice.finish_reason)

        delta = choice.delta
        if delta is None:
            return out
        if delta.content is not None:
            out.append(TextDeltaEvent(text_delta=delta.content))
        for position, tc in enumerate(delta.tool_calls or []):
            out.extend(self._handle_tool_call_delta(tc, position))
        return out

    def finish(self) -> List[StreamEvent]:
        """
        收尾：发出（必要时补发的）response-metadata 与唯一的 finish 事件。

        说明：
        - 幂等：重复调用返回空列表；
        - 已 abort 的 stream 不发 finish。
        """

        if self._state in (StreamState.FINISHED, StreamState.ERRORED):
            return []
        out: List[StreamEvent] = []
        self._emit_metadata(out, None)
        out.append(FinishEvent(finish_reason=self._finish_reason, usage=self._usage))
        self._state = StreamState.FINISHED
        self._tool_calls.clear()
        self._index_by_id.clear()
        return out

    def abort(self) -> None:
        """传输层不可恢复失败：进入 Errored（已发出的事件保持有效）。"""

        if self._state != StreamState.FINISHED:
            self._state = StreamState.ERRORED
        self._tool_calls.clear()
        self._index_by_id.clear()

    def _ensure_open(self) -> None:
        """Finished / Errored 之后禁止继续喂入。"""

        if self._state in (StreamState.FINISHED, StreamState.ERRORED):
            raise RuntimeError(f"stream already {self._state.value}")

    def _emit_metadata(self, out: List[StreamEvent], chunk: Optional[ChatCompletionChunk]) -> None:
        """首个事件之前补发 response-metadata（整个 stream 只发一次）。"""

        if self._metadata_sent:
            return
        self._metadata_sent = True
        meta = get_response_metadata(chunk)
        out.append(ResponseMetadataEvent(id=meta.id, model_id=meta.model_id, timestamp=meta.timestamp))

    def _resolve_index(self, tc: ToolCallDeltaSchema, position: int) -> int:
        """
        决定分片归属的 index。

        优先级：
        1) wire `index`
        2) 已见过的 wire id -> 其 index
        3) 分片在 `delta.tool_calls[]` 中的位置
        """

        if tc.index is not None:
            return tc.index
        if tc.id and tc.id in self._index_by_id:
            return self._index_by_id[tc.id]
        return position

    def _handle_tool_call_delta(self, tc: ToolCallDeltaSchema, position: int) -> List[StreamEvent]:
        """处理单个 tool call 分片，产出 0..2 个 tool-call-delta 事件。"""

        idx = self._resolve_index(tc, position)
        st = self._tool_calls.get(idx)
        if st is None:
            st = _ToolCallState()
            self._tool_calls[idx] = st

        if tc.id and st.id is None:
            st.id = tc.id
            self._taken_ids.add(tc.id)
            self._index_by_id[tc.id] = idx

        fn = tc.function
        name = fn.name if fn is not None and fn.name else None
        args = fn.arguments if fn is not None and fn.arguments else None
        if name and st.name is None:
            st.name = name

        if st.name is None and args is None:
            msg = f"skipping tool call delta without name or arguments (index={idx})"
            self.warnings.append(msg)
            logger.warning(msg)
            return []

        if st.id is None:
            st.id = generate_tool_call_id(st.name, taken=self._taken_ids)
            logger.info("repaired missing streaming tool call id: index=%d id=%s", idx, st.id)

        out: List[StreamEvent] = []
        if name:
            out.append(ToolCallDeltaEvent(tool_call_id=st.id, tool_name=st.name or name, args_text_delta=""))
        if args is not None:
            st.arguments += args
            out.append(ToolCallDeltaEvent(tool_call_id=st.id, tool_name=st.name or "", args_text_delta=args))
        return out


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """便捷函数：把 SSE 行序列解帧为 data payload 序列。"""

    decoder = SseLineDecoder()
    for line in lines:
        data = decoder.feed_line(line)
        if data is not None:
            yield data
    tail = decoder.flush()
    if tail is not None:
        yield tail


def iter_stream_events(data_payloads: Iterable[str]) -> Iterator[StreamEvent]:
    """
    便捷函数：把一组 data payload 归一化为完整事件流（含首个 metadata 与最后的 finish）。

    参数：
    - data_payloads：每条都是 SSE `data:` 的内容（不含前缀）
    """

    normalizer = ChatStreamNormalizer()
    for data in data_payloads:
        for ev in normalizer.feed_data(data):
            yield ev
    for ev in normalizer.finish():
        yield ev
