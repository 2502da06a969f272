"""文本补全（completions 接口）控制器。

与对话控制器共用 single-flight、中止和错误处理流程，区别在于：

- 累积器以当前 prompt 为初始内容，增量是 choices[0].text；
- 提交时把 prompt 替换为 prompt + 生成文本（+ suffix），suffix 随之清空；
- insert(index) 在 index 处切开 prompt，后半段作为 suffix 再生成。
"""

import logging
import threading
from typing import Any, Dict, Optional

from chat_core.domain.exceptions import EmptyResultError
from chat_core.domain.models import CompletionChunk, TextCompletion
from chat_core.engine.controller import GenerationHandle, StreamingController, server_error
from chat_core.engine.pending import Streaming
from chat_core.providers.openai_client import OpenAIClient
from chat_core.providers.sse import EventStream


class CompletionController(StreamingController[str]):
    kind = "completion"

    def __init__(self, client: OpenAIClient, completion: Optional[TextCompletion] = None):
        super().__init__()
        self._client = client
        self._completion = completion.copy() if completion is not None else TextCompletion()
        self._lock = threading.Lock()
        self._prompt_length = 0

    def snapshot(self) -> TextCompletion:
        with self._lock:
            return self._completion.copy()

    def set_prompt(self, prompt: str) -> None:
        with self._lock:
            self._completion.prompt = prompt

    def set_model(self, model: str) -> None:
        with self._lock:
            self._completion.model = model

    def set_max_tokens(self, max_tokens: Optional[int]) -> None:
        with self._lock:
            self._completion.max_tokens = max_tokens

    def set_temperature(self, temperature: Optional[float]) -> None:
        with self._lock:
            self._completion.temperature = temperature

    def set_top_p(self, top_p: Optional[float]) -> None:
        with self._lock:
            self._completion.top_p = top_p

    async def generate(self) -> Optional[str]:
        """生成并把结果并入 prompt，返回新的 prompt。"""
        attempt = self._begin()
        return await self._run(attempt)

    async def insert(self, index: int) -> Optional[str]:
        self._ensure_idle()
        self._split_at(index)
        return await self.generate()

    def spawn_generate(self) -> GenerationHandle[str]:
        attempt = self._begin()
        return self._spawn(attempt)

    def spawn_insert(self, index: int) -> GenerationHandle[str]:
        self._ensure_idle()
        self._split_at(index)
        return self.spawn_generate()

    def _begin(self) -> int:
        prompt = self.snapshot().prompt
        attempt = self._acquire(initial=prompt)
        self._prompt_length = len(prompt)
        return attempt

    def _split_at(self, index: int) -> None:
        with self._lock:
            prompt = self._completion.prompt
            self._completion.prompt = prompt[:index]
            self._completion.suffix = prompt[index:]

    async def _open_stream(self, log_ctx: Dict[str, Any]) -> EventStream[CompletionChunk]:
        completion = self.snapshot()
        log_ctx["model"] = completion.model
        self._log(logging.INFO, "Calling provider (completion stream)", log_ctx, provider=self._client.name)
        return await self._client.completion_stream(completion)

    def _fold(self, attempt: int, chunk: CompletionChunk, log_ctx: Dict[str, Any]) -> None:
        if chunk.error is not None:
            raise server_error(chunk.error)
        self._log_usage(chunk.usage, log_ctx)
        if not chunk.choices:
            return
        text = chunk.choices[0].text
        if text:
            self._pending.append(attempt, None, text)

    def _commit(self, state: Streaming) -> str:
        if len(state.content) <= self._prompt_length:
            raise EmptyResultError(code="EMPTY_RESULT", message="No text generated")
        with self._lock:
            suffix = self._completion.suffix
            text = state.content + suffix if suffix else state.content
            self._completion.prompt = text
            self._completion.suffix = None
        return text
