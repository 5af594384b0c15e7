"""
Stream Reducer Unit Tests
"""

import json
from unittest.mock import AsyncMock

import pytest

from claude_relay.common.errors import BadUpstreamFrameError, MalformedEventError, UpstreamProviderError
from claude_relay.common.image import ImageResolver
from claude_relay.relay.request_converter import convert_openai_request
from claude_relay.relay.schemas import parse_chat_request
from claude_relay.relay.stream import StreamReducer, relay_stream
from claude_relay.relay.types import RequestMode, StreamState


def _frame(obj) -> str:
    return json.dumps(obj)


def _message_start(input_tokens=10):
    return _frame(
        {
            "type": "message_start",
            "message": {
                "id": "msg_1",
                "model": "claude-sonnet-4",
                "usage": {"input_tokens": input_tokens, "output_tokens": 1},
            },
        }
    )


def _text_delta(text, index=0):
    return _frame({"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": text}})


def _message_delta(stop_reason="end_turn", output_tokens=2):
    return _frame(
        {
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason},
            "usage": {"output_tokens": output_tokens},
        }
    )


MESSAGE_STOP = _frame({"type": "message_stop"})


def _run(reducer, frames):
    chunks = []
    for frame in frames:
        chunk = reducer.feed(frame)
        if chunk is not None:
            chunks.append(chunk)
    return chunks


def test_text_stream_yields_three_content_chunks_and_usage(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "claude-sonnet-4", include_usage=True, token_counter=token_counter)
    chunks = _run(
        reducer,
        [_message_start(), _text_delta("a"), _text_delta("b"), _message_delta(), MESSAGE_STOP],
    )

    non_terminal = [c for c in chunks if c["choices"][0]["finish_reason"] is None]
    assert len(non_terminal) == 3
    assert non_terminal[0]["choices"][0]["delta"] == {"role": "assistant", "content": ""}
    assert [c["choices"][0]["delta"]["content"] for c in non_terminal[1:]] == ["a", "b"]
    assert chunks[-1]["choices"][0]["finish_reason"] == "stop"
    assert all(c["id"] == "msg_1" and c["object"] == "chat.completion.chunk" for c in chunks)

    assert reducer.state is StreamState.FINALIZING
    assert reducer.accumulator.done is True

    trailer = reducer.finalize()
    assert len(trailer) == 1
    assert trailer[0]["choices"] == []
    assert trailer[0]["usage"]["prompt_tokens"] == 10
    assert trailer[0]["usage"]["completion_tokens"] == 2
    assert trailer[0]["usage"]["total_tokens"] == 12
    assert reducer.state is StreamState.DONE


def test_no_usage_chunk_unless_requested(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
    _run(reducer, [_message_start(), _text_delta("a"), _message_delta(), MESSAGE_STOP])
    assert reducer.finalize() == []


def test_tool_use_stream(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
    chunks = _run(
        reducer,
        [
            _message_start(),
            _frame({"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}),
            _text_delta("Let me check."),
            _frame({"type": "content_block_stop", "index": 0}),
            _frame(
                {
                    "type": "content_block_start",
                    "index": 1,
                    "content_block": {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {}},
                }
            ),
            _frame(
                {
                    "type": "content_block_delta",
                    "index": 1,
                    "delta": {"type": "input_json_delta", "partial_json": '{"city": '},
                }
            ),
            _frame(
                {
                    "type": "content_block_delta",
                    "index": 1,
                    "delta": {"type": "input_json_delta", "partial_json": '"Paris"}'},
                }
            ),
            _message_delta(stop_reason="tool_use"),
        ],
    )
    tool_chunks = [c for c in chunks if "tool_calls" in c["choices"][0]["delta"]]
    start = tool_chunks[0]["choices"][0]["delta"]["tool_calls"][0]
    assert start == {
        "index": 0,
        "id": "toolu_1",
        "type": "function",
        "function": {"name": "get_weather", "arguments": ""},
    }
    fragments = [c["choices"][0]["delta"]["tool_calls"][0]["function"]["arguments"] for c in tool_chunks[1:]]
    assert "".join(fragments) == '{"city": "Paris"}'
    assert all(c["choices"][0]["delta"]["tool_calls"][0]["index"] == 0 for c in tool_chunks)
    assert reducer.tool_calls[1]["arguments"] == '{"city": "Paris"}'
    assert chunks[-1]["choices"][0]["finish_reason"] == "tool_calls"


def test_thinking_and_signature_deltas(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
    chunks = _run(
        reducer,
        [
            _message_start(),
            _frame({"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "hmm"}}),
            _frame({"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "s"}}),
        ],
    )
    assert chunks[1]["choices"][0]["delta"] == {"reasoning_content": "hmm"}
    assert chunks[2]["choices"][0]["delta"] == {"reasoning_content": "\n"}
    assert reducer.accumulator.response_text == "hmm"


def test_ping_done_and_blank_frames_ignored(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
    assert reducer.feed("") is None
    assert reducer.feed("[DONE]") is None
    assert reducer.feed(_frame({"type": "ping"})) is None


def test_frames_after_message_stop_ignored(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
    _run(reducer, [_message_start(), MESSAGE_STOP])
    assert reducer.feed(_text_delta("late")) is None
    assert reducer.accumulator.response_text == ""


def test_incomplete_turn_recounts_usage(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", include_usage=True, token_counter=token_counter)
    _run(reducer, [_message_start(input_tokens=7), _text_delta("one two "), _text_delta("three")])
    usage = reducer.finalize()[0]["usage"]
    assert usage["prompt_tokens"] == 7
    assert usage["completion_tokens"] == 3
    assert usage["total_tokens"] == 10


def test_cache_usage_reported(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", include_usage=True, token_counter=token_counter)
    start = _frame(
        {
            "type": "message_start",
            "message": {
                "id": "msg_1",
                "model": "m",
                "usage": {
                    "input_tokens": 5,
                    "cache_read_input_tokens": 100,
                    "cache_creation_input_tokens": 30,
                    "cache_creation": {"ephemeral_5m_input_tokens": 10, "ephemeral_1h_input_tokens": 20},
                },
            },
        }
    )
    _run(reducer, [start, _text_delta("hi"), _message_delta(output_tokens=4), MESSAGE_STOP])
    usage = reducer.finalize()[0]["usage"]
    assert usage["prompt_tokens_details"] == {"cached_tokens": 100, "cached_creation_tokens": 30}
    assert usage["claude_cache_creation_5_m_tokens"] == 10
    assert usage["claude_cache_creation_1_h_tokens"] == 20
    assert usage["completion_tokens"] == 4


def test_completion_mode_stream(token_counter):
    reducer = StreamReducer(
        RequestMode.COMPLETION,
        "claude-2.1",
        include_usage=True,
        token_counter=token_counter,
        prompt_tokens=4,
    )
    chunks = _run(
        reducer,
        [
            _frame({"type": "completion", "completion": "Hello there", "stop_reason": None}),
            _frame({"type": "completion", "completion": " friend", "stop_reason": "stop_sequence"}),
        ],
    )
    assert [c["choices"][0]["delta"]["content"] for c in chunks] == ["Hello there", " friend"]
    assert chunks[-1]["choices"][0]["finish_reason"] == "stop"
    usage = reducer.finalize()[0]["usage"]
    assert usage["prompt_tokens"] == 4
    assert usage["completion_tokens"] == 3
    assert usage["total_tokens"] == 7


def test_unknown_stop_reason_passes_through(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
    chunk = _run(reducer, [_message_start(), _message_delta(stop_reason="refusal")])[-1]
    assert chunk["choices"][0]["finish_reason"] == "refusal"


class TestReducerErrors:
    def test_bad_json(self, token_counter):
        reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
        with pytest.raises(BadUpstreamFrameError):
            reducer.feed("{not json")

    def test_error_envelope(self, token_counter):
        reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
        with pytest.raises(UpstreamProviderError) as exc_info:
            reducer.feed(_frame({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}))
        assert exc_info.value.error_type == "overloaded_error"
        assert exc_info.value.message == "Overloaded"

    def test_block_start_without_block(self, token_counter):
        reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
        with pytest.raises(MalformedEventError):
            reducer.feed(_frame({"type": "content_block_start", "index": 0}))

    def test_block_delta_without_delta(self, token_counter):
        reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
        with pytest.raises(MalformedEventError):
            reducer.feed(_frame({"type": "content_block_delta", "index": 0}))


async def _aiter(items):
    for item in items:
        yield item


def _decode_sse(raw: bytes) -> list:
    events = []
    for block in raw.decode().split("\n\n"):
        if not block:
            continue
        data = block[len("data: "):]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events


@pytest.mark.asyncio
async def test_relay_stream_emits_done_after_usage(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", include_usage=True, token_counter=token_counter)
    frames = [_message_start(), _text_delta("hi"), _message_delta(), MESSAGE_STOP]
    out = b"".join([chunk async for chunk in relay_stream(reducer, _aiter(frames))])
    events = _decode_sse(out)
    assert events[-1] == "[DONE]"
    assert events[-2]["choices"] == []
    assert "usage" in events[-2]
    assert reducer.error is None


@pytest.mark.asyncio
async def test_relay_stream_error_keeps_partial_output(token_counter):
    reducer = StreamReducer(RequestMode.MESSAGE, "m", include_usage=True, token_counter=token_counter)
    frames = [
        _message_start(),
        _text_delta("partial"),
        _frame({"type": "error", "error": {"type": "api_error", "message": "Internal"}}),
        _text_delta("never"),
    ]
    out = b"".join([chunk async for chunk in relay_stream(reducer, _aiter(frames))])
    events = _decode_sse(out)
    assert events[1]["choices"][0]["delta"]["content"] == "partial"
    assert events[-2] == {"error": {"message": "Internal", "type": "api_error", "code": "upstream_error"}}
    assert events[-1] == "[DONE]"
    assert isinstance(reducer.error, UpstreamProviderError)


@pytest.mark.asyncio
async def test_relay_stream_hides_frame_details_by_default(token_counter):
    frames = [_message_start(), "{not json"]

    reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
    events = _decode_sse(b"".join([chunk async for chunk in relay_stream(reducer, _aiter(frames))]))
    assert events[-2]["error"]["code"] == "bad_upstream_frame"
    assert "details" not in events[-2]["error"]

    reducer = StreamReducer(RequestMode.MESSAGE, "m", token_counter=token_counter)
    out = b"".join([chunk async for chunk in relay_stream(reducer, _aiter(frames), include_details=True)])
    assert _decode_sse(out)[-2]["error"]["details"] == {"frame": "{not json"}


@pytest.mark.asyncio
async def test_round_trip_single_text(settings, token_counter):
    """A one-message request reduced from a matching stream reproduces the text verbatim."""
    text = "The quick brown fox, \"quoted\" and ünïcode."
    request = parse_chat_request({"model": "claude-sonnet-4", "messages": [{"role": "user", "content": text}]})
    payload = await convert_openai_request(request, RequestMode.MESSAGE, settings, AsyncMock(spec=ImageResolver))
    sent_text = payload["messages"][-1]["content"][0]["text"]

    reducer = StreamReducer(RequestMode.MESSAGE, payload["model"], token_counter=token_counter)
    chunks = _run(reducer, [_message_start(), _text_delta(sent_text), _message_delta(), MESSAGE_STOP])
    assembled = "".join(c["choices"][0]["delta"].get("content") or "" for c in chunks)
    assert assembled == text
