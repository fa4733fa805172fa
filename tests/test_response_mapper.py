from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from dudoxx_ai.core.errors import ResponseValidationError
from dudoxx_ai.llm.finish_reason import map_finish_reason
from dudoxx_ai.llm.protocol import FinishReason
from dudoxx_ai.llm.response_mapper import map_chat_completion
from dudoxx_ai.llm.schemas import parse_completion


def _completion(
    *,
    content: Optional[str] = None,
    tool_calls: Optional[List[Dict[str, Any]]] = None,
    finish_reason: Optional[str] = "stop",
    usage: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    message: Dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls is not None:
        message["tool_calls"] = tool_calls
    body: Dict[str, Any] = {
        "id": "chatcmpl-1",
        "created": 1700000000,
        "model": "dudoxx",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
    }
    if usage is not None:
        body["usage"] = usage
    return body


def test_plain_text_completion() -> None:
    mapped = map_chat_completion(
        parse_completion(_completion(content="Hello!", usage={"prompt_tokens": 5, "completion_tokens": 2}))
    )

    assert mapped.text == "Hello!"
    assert mapped.tool_calls == []
    assert mapped.finish_reason == FinishReason.STOP
    assert mapped.usage.prompt_tokens == 5
    assert mapped.usage.completion_tokens == 2
    assert mapped.usage.total_tokens == 7


def test_missing_tool_call_id_is_repaired() -> None:
    body = _completion(
        tool_calls=[{"type": "function", "function": {"name": "get_weather", "arguments": '{"city":"Berlin"}'}}],
        finish_reason="tool_calls",
    )
    mapped = map_chat_completion(parse_completion(body))

    assert len(mapped.tool_calls) == 1
    tc = mapped.tool_calls[0]
    assert tc.tool_call_id.startswith("call_")
    assert tc.tool_call_id.endswith("_get_weat")
    assert tc.tool_name == "get_weather"
    assert tc.args == '{"city":"Berlin"}'
    assert mapped.finish_reason == FinishReason.TOOL_CALLS


def test_repaired_ids_are_unique_and_existing_ids_kept() -> None:
    body = _completion(
        tool_calls=[
            {"id": "call_given", "function": {"name": "a", "arguments": "{}"}},
            {"function": {"name": "a", "arguments": "{}"}},
            {"id": "", "function": {"name": "a", "arguments": "{}"}},
        ]
    )
    mapped = map_chat_completion(parse_completion(body))

    ids = [tc.tool_call_id for tc in mapped.tool_calls]
    assert ids[0] == "call_given"
    assert len(set(ids)) == 3
    assert all(i for i in ids)


def test_malformed_arguments_replaced_with_empty_object() -> None:
    body = _completion(
        tool_calls=[
            {"id": "c1", "function": {"name": "a", "arguments": "{not json"}},
            {"id": "c2", "function": {"name": "b"}},
            {"id": "c3", "function": {"name": "c", "arguments": 12}},
        ]
    )
    mapped = map_chat_completion(parse_completion(body))

    assert [tc.args for tc in mapped.tool_calls] == ["{}", "{}", "{}"]


def test_nameless_tool_call_dropped_others_kept() -> None:
    body = _completion(
        tool_calls=[
            {"id": "c1", "function": {"arguments": "{}"}},
            {"id": "c2", "function": {"name": 7, "arguments": "{}"}},
            {"id": "c3", "function": {"name": "ok", "arguments": "{}"}},
        ]
    )
    mapped = map_chat_completion(parse_completion(body))

    assert [tc.tool_call_id for tc in mapped.tool_calls] == ["c3"]


def test_missing_usage_maps_to_zero() -> None:
    mapped = map_chat_completion(parse_completion(_completion(content="x")))
    assert mapped.usage.prompt_tokens == 0
    assert mapped.usage.completion_tokens == 0


def test_empty_choices_yield_empty_text() -> None:
    mapped = map_chat_completion(parse_completion({"id": "x", "choices": []}))
    assert mapped.text == ""
    assert mapped.finish_reason == FinishReason.UNKNOWN


def test_invalid_body_raises_validation_error() -> None:
    with pytest.raises(ResponseValidationError):
        parse_completion({"id": "x"})


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("stop", FinishReason.STOP),
        ("length", FinishReason.LENGTH),
        ("tool_calls", FinishReason.TOOL_CALLS),
        ("function_call", FinishReason.TOOL_CALLS),
        ("content_filter", FinishReason.CONTENT_FILTER),
        ("whatever", FinishReason.UNKNOWN),
        (None, FinishReason.UNKNOWN),
    ],
)
def test_finish_reason_mapping(raw: Optional[str], expected: FinishReason) -> None:
    assert map_finish_reason(raw) == expected
