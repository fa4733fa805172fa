from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest

from dudoxx_ai.core.errors import MalformedStreamChunkError
from dudoxx_ai.llm.chat_sse import (
    ChatStreamNormalizer,
    ErrorEvent,
    FinishEvent,
    ResponseMetadataEvent,
    SseLineDecoder,
    StreamState,
    TextDeltaEvent,
    ToolCallDeltaEvent,
    iter_sse_data,
    iter_stream_events,
)
from dudoxx_ai.llm.protocol import FinishReason
from dudoxx_ai.llm.response_metadata import StreamingStats


def _chunk(
    *,
    content: Optional[str] = None,
    tool_calls: Optional[List[Dict[str, Any]]] = None,
    finish_reason: Optional[str] = None,
    usage: Optional[Dict[str, Any]] = None,
) -> str:
    delta: Dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    obj: Dict[str, Any] = {
        "id": "chatcmpl-42",
        "created": 1700000000,
        "model": "dudoxx",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    if usage is not None:
        obj["usage"] = usage
    return json.dumps(obj)


def test_text_stream_event_order_and_zero_usage() -> None:
    events = list(
        iter_stream_events(
            [
                _chunk(content="Hel"),
                _chunk(content="lo"),
                _chunk(finish_reason="stop"),
                "[DONE]",
            ]
        )
    )

    assert isinstance(events[0], ResponseMetadataEvent)
    assert events[0].id == "chatcmpl-42"
    assert events[0].model_id == "dudoxx"
    assert events[0].timestamp is not None
    assert int(events[0].timestamp.timestamp()) == 1700000000

    assert [e.text_delta for e in events if isinstance(e, TextDeltaEvent)] == ["Hel", "lo"]

    assert isinstance(events[-1], FinishEvent)
    assert events[-1].finish_reason == FinishReason.STOP
    assert events[-1].usage.prompt_tokens == 0
    assert events[-1].usage.completion_tokens == 0
    assert sum(1 for e in events if isinstance(e, ResponseMetadataEvent)) == 1
    assert sum(1 for e in events if isinstance(e, FinishEvent)) == 1


def test_usage_is_last_write_wins() -> None:
    events = list(
        iter_stream_events(
            [
                _chunk(content="a", usage={"prompt_tokens": 1, "completion_tokens": 1}),
                _chunk(finish_reason="length", usage={"prompt_tokens": 10, "completion_tokens": 20}),
            ]
        )
    )

    finish = events[-1]
    assert isinstance(finish, FinishEvent)
    assert finish.finish_reason == FinishReason.LENGTH
    assert finish.usage.prompt_tokens == 10
    assert finish.usage.completion_tokens == 20


def test_tool_call_without_id_reuses_repaired_id_across_chunks() -> None:
    events = list(
        iter_stream_events(
            [
                _chunk(tool_calls=[{"index": 0, "type": "function", "function": {"name": "get_weather", "arguments": ""}}]),
                _chunk(tool_calls=[{"index": 0, "function": {"arguments": '{"city":'}}]),
                _chunk(tool_calls=[{"index": 0, "function": {"arguments": '"Paris"}'}}]),
                _chunk(finish_reason="tool_calls"),
                "[DONE]",
            ]
        )
    )

    deltas = [e for e in events if isinstance(e, ToolCallDeltaEvent)]
    assert len(deltas) == 3
    ids = {d.tool_call_id for d in deltas}
    assert len(ids) == 1
    (call_id,) = ids
    assert call_id.startswith("call_")
    assert all(d.tool_name == "get_weather" for d in deltas)
    assert deltas[0].args_text_delta == ""
    assert "".join(d.args_text_delta for d in deltas) == '{"city":"Paris"}'
    assert isinstance(events[-1], FinishEvent)
    assert events[-1].finish_reason == FinishReason.TOOL_CALLS


def test_name_and_args_in_same_chunk_emit_two_deltas() -> None:
    events = list(
        iter_stream_events(
            [_chunk(tool_calls=[{"index": 0, "id": "call_abc", "function": {"name": "echo", "arguments": '{"x":1}'}}])]
        )
    )

    deltas = [e for e in events if isinstance(e, ToolCallDeltaEvent)]
    assert [(d.tool_call_id, d.tool_name, d.args_text_delta) for d in deltas] == [
        ("call_abc", "echo", ""),
        ("call_abc", "echo", '{"x":1}'),
    ]


def test_parallel_tool_calls_stitched_by_index() -> None:
    events = list(
        iter_stream_events(
            [
                _chunk(
                    tool_calls=[
                        {"index": 0, "id": "call_a", "function": {"name": "a"}},
                        {"index": 1, "id": "call_b", "function": {"name": "b"}},
                    ]
                ),
                _chunk(tool_calls=[{"index": 1, "function": {"arguments": "{}"}}]),
                _chunk(tool_calls=[{"index": 0, "function": {"arguments": '{"k":2}'}}]),
            ]
        )
    )

    args_by_id: Dict[str, str] = {}
    for e in events:
        if isinstance(e, ToolCallDeltaEvent):
            args_by_id[e.tool_call_id] = args_by_id.get(e.tool_call_id, "") + e.args_text_delta
    assert args_by_id == {"call_a": '{"k":2}', "call_b": "{}"}


def test_parse_error_becomes_error_event_and_stream_continues() -> None:
    events = list(iter_stream_events([_chunk(content="ok"), "{broken json", _chunk(content="still")]))

    errors = [e for e in events if isinstance(e, ErrorEvent)]
    assert len(errors) == 1
    assert isinstance(errors[0].error, MalformedStreamChunkError)
    assert errors[0].error.raw == "{broken json"
    assert [e.text_delta for e in events if isinstance(e, TextDeltaEvent)] == ["ok", "still"]
    assert isinstance(events[-1], FinishEvent)


def test_first_chunk_parse_error_still_emits_metadata_first() -> None:
    events = list(iter_stream_events(["not json", _chunk(content="x")]))

    assert isinstance(events[0], ResponseMetadataEvent)
    assert events[0].id is None
    assert isinstance(events[1], ErrorEvent)
    assert sum(1 for e in events if isinstance(e, ResponseMetadataEvent)) == 1


def test_empty_stream_yields_metadata_then_finish() -> None:
    events = list(iter_stream_events(["[DONE]"]))

    assert len(events) == 2
    assert isinstance(events[0], ResponseMetadataEvent)
    assert isinstance(events[1], FinishEvent)
    assert events[1].finish_reason == FinishReason.UNKNOWN


def test_payloads_after_done_are_ignored() -> None:
    events = list(iter_stream_events([_chunk(content="a"), "[DONE]", _chunk(content="late")]))
    assert [e.text_delta for e in events if isinstance(e, TextDeltaEvent)] == ["a"]


def test_delta_without_name_or_args_is_skipped_with_warning() -> None:
    n = ChatStreamNormalizer()
    out = n.feed_data(_chunk(tool_calls=[{"index": 0, "type": "function"}]))

    assert [e.type for e in out] == ["response-metadata"]
    assert len(n.warnings) == 1


def test_finish_is_idempotent_and_feed_after_finish_raises() -> None:
    n = ChatStreamNormalizer()
    n.feed_data(_chunk(content="a"))
    assert n.state == StreamState.STREAMING

    first = n.finish()
    assert [e.type for e in first] == ["finish"]
    assert n.finish() == []
    assert n.state == StreamState.FINISHED

    with pytest.raises(RuntimeError):
        n.feed_data(_chunk(content="b"))


def test_abort_suppresses_finish() -> None:
    n = ChatStreamNormalizer()
    n.feed_data(_chunk(content="a"))
    n.abort()

    assert n.state == StreamState.ERRORED
    assert n.finish() == []


def test_stats_record_chunks() -> None:
    stats = StreamingStats(stream_start_time=0)
    n = ChatStreamNormalizer(stats=stats)
    payload = _chunk(content="é")
    n.feed_data(payload)
    n.feed_data("oops")

    assert stats.chunks_received == 2
    assert stats.bytes_received == len(payload.encode("utf-8")) + 4
    assert n.chunk_index == 1


def test_sse_line_decoder_framing() -> None:
    lines = [
        ": keep-alive",
        "event: message",
        'data: {"a":1}',
        "",
        "data:first",
        "data: second",
        "",
        "",
        "data: [DONE]",
    ]

    assert list(iter_sse_data(lines)) == ['{"a":1}', "first\nsecond", "[DONE]"]


def test_sse_line_decoder_flush_empty() -> None:
    d = SseLineDecoder()
    assert d.feed_line("id: 7") is None
    assert d.flush() is None
