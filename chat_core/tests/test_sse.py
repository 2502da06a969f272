import asyncio

import httpx
import pytest

from chat_core.domain.exceptions import DecodeError, NetworkError
from chat_core.domain.models import ChatStreamChunk
from chat_core.providers.sse import decode_events, split_frames

from conftest import DONE, delta_frame, frame


def make_response(chunks):
    async def body():
        for chunk in chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk

    return httpx.Response(200, content=body())


async def collect(response, channel_size=100):
    out = []
    async with decode_events(response, ChatStreamChunk.from_dict, channel_size=channel_size) as events:
        async for event in events:
            out.append(event)
    return out


def test_split_frames_skips_blank_fragments():
    text = 'data: {"a": 1}\n\n  \ndata: {"b": 2}\n\ndata: \n\n'
    assert [f.strip() for f in split_frames(text)] == ['{"a": 1}', '{"b": 2}']


@pytest.mark.asyncio
async def test_decode_multiple_frames_in_one_chunk():
    response = make_response([delta_frame("hel", role="assistant") + delta_frame("lo") + DONE])
    events = await collect(response)
    assert [e.choices[0].delta.content for e in events] == ["hel", "lo"]
    assert events[0].choices[0].delta.role == "assistant"


@pytest.mark.asyncio
async def test_decode_frames_in_separate_and_empty_chunks():
    response = make_response([delta_frame("a"), b"", "\n\n", delta_frame("b"), DONE])
    events = await collect(response)
    assert [e.choices[0].delta.content for e in events] == ["a", "b"]


@pytest.mark.asyncio
async def test_decode_stops_at_sentinel():
    response = make_response([delta_frame("a"), DONE, delta_frame("ignored")])
    events = await collect(response)
    assert len(events) == 1


@pytest.mark.asyncio
async def test_decode_stream_end_without_sentinel_is_not_an_error():
    response = make_response([delta_frame("a")])
    events = await collect(response)
    assert len(events) == 1


@pytest.mark.asyncio
async def test_decode_error_frame_is_delivered_as_event():
    response = make_response([frame({"error": {"message": "invalid_api_key", "type": "invalid_request_error"}})])
    events = await collect(response)
    assert events[0].error.message == "invalid_api_key"
    assert events[0].choices == []


@pytest.mark.asyncio
async def test_malformed_json_terminates_with_decode_error():
    response = make_response([delta_frame("a") + "data: {not json}\n\n" + delta_frame("b")])
    seen = []
    with pytest.raises(DecodeError):
        async with decode_events(response, ChatStreamChunk.from_dict) as events:
            async for event in events:
                seen.append(event)
    assert [e.choices[0].delta.content for e in seen] == ["a"]


@pytest.mark.asyncio
async def test_unknown_role_is_a_decode_error():
    response = make_response([delta_frame("x", role="robot")])
    with pytest.raises(DecodeError):
        await collect(response)


@pytest.mark.asyncio
async def test_read_error_is_final_item():
    response = make_response([delta_frame("a"), httpx.ReadError("connection reset")])
    seen = []
    with pytest.raises(NetworkError) as exc_info:
        async with decode_events(response, ChatStreamChunk.from_dict) as events:
            async for event in events:
                seen.append(event)
    assert len(seen) == 1
    assert "connection reset" in exc_info.value.message


@pytest.mark.asyncio
async def test_multibyte_character_split_across_chunks():
    encoded = delta_frame("你好").encode("utf-8")
    cut = encoded.index("你".encode("utf-8")) + 1
    response = make_response([encoded[:cut], encoded[cut:], DONE])
    events = await collect(response)
    assert events[0].choices[0].delta.content == "你好"


@pytest.mark.asyncio
async def test_consumer_close_stops_producer():
    produced = []

    async def body():
        for i in range(50):
            produced.append(i)
            yield delta_frame(str(i)).encode("utf-8")
        await asyncio.Event().wait()

    response = httpx.Response(200, content=body())
    events = decode_events(response, ChatStreamChunk.from_dict, channel_size=1)
    first = await events.__anext__()
    assert first.choices[0].delta.content == "0"
    await events.aclose()
    # 有界通道：消费者只取了一项，生产者不会把整个流读完
    assert len(produced) < 50
    with pytest.raises(StopAsyncIteration):
        await events.__anext__()


@pytest.mark.asyncio
async def test_frame_split_mid_json_is_reassembled():
    text = delta_frame("hello", role="assistant")
    response = make_response([text[:10], text[10:25], text[25:] + DONE])
    events = await collect(response)
    assert [e.choices[0].delta.content for e in events] == ["hello"]


@pytest.mark.asyncio
async def test_truncated_trailing_frame_is_a_decode_error():
    text = delta_frame("a") + delta_frame("b")
    response = make_response([text[:-12]])
    seen = []
    with pytest.raises(DecodeError):
        async with decode_events(response, ChatStreamChunk.from_dict) as events:
            async for event in events:
                seen.append(event)
    assert [e.choices[0].delta.content for e in seen] == ["a"]
