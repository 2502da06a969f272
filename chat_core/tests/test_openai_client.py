import pytest

from chat_core.domain.exceptions import ApiError, RateLimitError, ValidationError
from chat_core.domain.models import ChatMessage, Session, TextCompletion
from chat_core.providers.openai_client import OpenAIClient, build_chat_payload
from chat_core.providers.transport import DirectTransport

from conftest import DONE, delta_frame


def test_missing_api_key():
    with pytest.raises(ValidationError) as exc_info:
        OpenAIClient(api_key="", transport=DirectTransport())
    assert exc_info.value.code == "MISSING_API_KEY"


def test_build_chat_payload_drops_unset_parameters():
    session = Session(messages=[ChatMessage(role="user", content="hi")], max_tokens=None, stop=None)
    payload = build_chat_payload(session)
    assert payload["stream"] is True
    assert payload["messages"] == [{"role": "user", "content": "hi"}]
    assert "max_tokens" not in payload
    assert "stop" not in payload
    assert payload["temperature"] == 1.0
    assert payload["n"] == 1


@pytest.mark.asyncio
async def test_chat_stream_request_and_events(server, client):
    server.add_stream([delta_frame("ok", role="assistant"), DONE])
    session = Session(
        model="gpt-4",
        messages=[ChatMessage(role="user", content="hi")],
        max_tokens=16,
        stop=["\n"],
    )
    async with await client.chat_stream(session) as events:
        chunks = [e async for e in events]

    request = server.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://api.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert request.headers["Content-Type"] == "application/json"
    payload = server.payload()
    assert payload["model"] == "gpt-4"
    assert payload["max_tokens"] == 16
    assert payload["stop"] == ["\n"]
    assert payload["stream"] is True
    assert chunks[0].choices[0].delta.content == "ok"


@pytest.mark.asyncio
async def test_http_error_status_maps_to_api_error(server, client):
    server.add_json(
        {"error": {"message": "Incorrect API key provided", "type": "invalid_request_error", "code": "invalid_api_key"}},
        status=401,
    )
    with pytest.raises(ApiError) as exc_info:
        await client.chat_stream(Session())
    err = exc_info.value
    assert err.http_status == 401
    assert err.message == "Incorrect API key provided"
    assert err.error_code == "invalid_api_key"
    assert err.error_type == "invalid_request_error"


@pytest.mark.asyncio
async def test_http_429_maps_to_rate_limit(server, client):
    server.add_json({"error": {"message": "Rate limit reached", "type": "requests"}}, status=429)
    with pytest.raises(RateLimitError) as exc_info:
        await client.chat_stream(Session())
    assert exc_info.value.code == "RATE_LIMIT"


@pytest.mark.asyncio
async def test_completion_stream_payload(server, client):
    server.add_stream(['data: {"choices": [{"text": "x", "index": 0}]}\n\n', DONE])
    completion = TextCompletion(prompt="Once", suffix="end")
    async with await client.completion_stream(completion) as events:
        chunks = [e async for e in events]
    assert str(server.requests[0].url) == "https://api.test/v1/completions"
    payload = server.payload()
    assert payload["prompt"] == "Once"
    assert payload["suffix"] == "end"
    assert payload["max_tokens"] == 2048
    assert chunks[0].choices[0].text == "x"


@pytest.mark.asyncio
async def test_list_models(server, client):
    server.add_json(
        {
            "object": "list",
            "data": [
                {"id": "gpt-3.5-turbo", "object": "model", "created": 1677610602, "owned_by": "openai"},
                {"id": "gpt-4", "object": "model", "created": 1687882411, "owned_by": "openai"},
            ],
        }
    )
    models = await client.list_models()
    assert [m.id for m in models] == ["gpt-3.5-turbo", "gpt-4"]
    assert server.requests[0].method == "GET"
    assert str(server.requests[0].url) == "https://api.test/v1/models"
