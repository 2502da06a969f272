"""Pytest fixtures：假的流式服务端与客户端。"""

import asyncio
import json

import httpx
import pytest

from chat_core.providers.openai_client import OpenAIClient
from chat_core.providers.transport import DirectTransport


def frame(payload) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def delta_frame(content=None, role=None) -> str:
    delta = {}
    if role is not None:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    return frame({"id": "c1", "object": "chat.completion.chunk", "choices": [{"index": 0, "delta": delta}]})


DONE = "data: [DONE]\n\n"


async def wait_until(predicate, timeout=2.0):
    """轮询直到 predicate() 为真，超时则失败。"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class FakeServer:
    """按顺序为每次请求返回预设响应，并记录收到的请求。

    add_stream 的响应体按给定分块逐块发出；add_json 返回一个普通 JSON 响应。
    """

    def __init__(self):
        self.requests = []
        self._responses = []

    def add_stream(self, chunks, status=200, stall=None):
        self._responses.append(("stream", status, list(chunks), stall))

    def add_json(self, payload, status=200):
        self._responses.append(("json", status, payload, None))

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        kind, status, body, stall = self._responses.pop(0)
        if kind == "json":
            return httpx.Response(status, json=body)

        async def stream():
            for chunk in body:
                if isinstance(chunk, Exception):
                    raise chunk
                yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk
            if stall is not None:
                await stall.wait()

        return httpx.Response(status, content=stream())

    def payload(self, index=-1):
        return json.loads(self.requests[index].content)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def client(server):
    transport = DirectTransport(http_transport=httpx.MockTransport(server.handler))
    return OpenAIClient(api_key="sk-test", transport=transport, base_url="https://api.test/v1")


@pytest.fixture
def stall():
    """永不触发的事件，用来让响应体一直挂起。"""
    return asyncio.Event()
