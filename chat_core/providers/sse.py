"""流式事件解码器（server-sent events）。

把任意分块的 HTTP 响应体转换成逐个协议事件：

1. 逐块读取响应体（每次读取都可能挂起等待网络），按 UTF-8 增量解码。
2. 文本先进入缓冲区，只取到最后一个 "\\n\\n" 为止的完整部分，
   未结束的尾部留给下一块，所以块边界切断的帧（或多字节字符）也能还原。
3. 完整部分按字面标记 "data: " 切分，丢弃只含空白的片段；
   一个块里可能有零个、一个或多个帧，全部都要处理。
4. 片段以 "[DONE]" 开头视为结束哨兵，正常终止；流结束时缓冲区里的剩余内容也会处理。
5. 其余片段按 JSON 解析为事件；解析失败以 DecodeError 终止。

生产者在后台任务中运行，通过有界队列把事件交给消费者：
消费者跟不上时生产者挂起，内存占用有上限。读取错误和解析错误
都作为序列的最后一项交付给消费者，不会被静默丢弃。
消费者关闭流（例如会话被中止）时，生产者立即被取消并关闭响应。
"""

import asyncio
import codecs
import json
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar, Union

import httpx

from chat_core.domain.exceptions import BusinessError, DecodeError, NetworkError
from chat_core.infrastructure.logging.logger import logger


DATA_MARKER = "data: "
DONE_SENTINEL = "[DONE]"
FRAME_END = "\n\n"

T = TypeVar("T")

# 队列里的结束标记
_END = object()

log = logger.getChild("sse")


def split_frames(text: str) -> Iterator[str]:
    """按 "data: " 切分一段文本，跳过空白片段。"""
    for raw in text.split(DATA_MARKER):
        if raw.strip():
            yield raw


class EventStream(Generic[T]):
    """一次请求对应的事件序列，只能迭代一次。

    用法::

        async with decode_events(response, ChatStreamChunk.from_dict) as events:
            async for event in events:
                ...
    """

    def __init__(
        self,
        response: httpx.Response,
        parse: Callable[[Any], T],
        channel_size: int = 100,
    ):
        self._response = response
        self._parse = parse
        self._queue: "asyncio.Queue[Union[T, BusinessError, object]]" = asyncio.Queue(maxsize=channel_size)
        self._task: Optional[asyncio.Task] = None
        self._finished = False

    def __aiter__(self) -> "EventStream[T]":
        return self

    async def __anext__(self) -> T:
        if self._finished:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._produce())
        item = await self._queue.get()
        if item is _END:
            self._finished = True
            raise StopAsyncIteration
        if isinstance(item, BusinessError):
            self._finished = True
            raise item
        return item

    async def __aenter__(self) -> "EventStream[T]":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """停止生产者并释放响应；可重复调用。"""
        self._finished = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._response.aclose()

    async def _produce(self) -> None:
        outcome: Union[BusinessError, object] = _END
        try:
            await self._pump()
        except BusinessError as err:
            outcome = err
        except Exception as e:
            log.exception("Unexpected stream failure")
            outcome = BusinessError(code="STREAM_ERROR", message=str(e) or type(e).__name__)
        finally:
            await self._response.aclose()
        await self._queue.put(outcome)

    async def _pump(self) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")()
        buffer = ""
        try:
            async for chunk in self._response.aiter_bytes():
                buffer += self._decode_text(decoder, chunk)
                # 只处理到最后一个帧结束符为止，未结束的尾部留到下一块
                cut = buffer.rfind(FRAME_END)
                if cut < 0:
                    continue
                cut += len(FRAME_END)
                complete, buffer = buffer[:cut], buffer[cut:]
                if await self._emit(complete):
                    return
            buffer += self._decode_text(decoder, b"", final=True)
            if buffer.strip():
                await self._emit(buffer)
        except httpx.HTTPError as e:
            log.error("Stream read failed", extra={"extra": {"error": str(e)}})
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    @staticmethod
    def _decode_text(decoder: codecs.IncrementalDecoder, chunk: bytes, final: bool = False) -> str:
        try:
            return decoder.decode(chunk, final)
        except UnicodeDecodeError as e:
            log.error("Invalid utf-8 in stream", extra={"extra": {"error": str(e)}})
            raise DecodeError(code="DECODE_ERROR", message=str(e))

    async def _emit(self, text: str) -> bool:
        """解析一段完整文本中的所有帧；遇到结束哨兵时返回 True。"""
        for raw in split_frames(text):
            log.debug("received", extra={"extra": {"frame": raw}})
            if raw.startswith(DONE_SENTINEL):
                log.info("received [DONE]")
                return True
            await self._queue.put(self._decode_frame(raw))
        return False

    def _decode_frame(self, raw: str) -> T:
        try:
            return self._parse(json.loads(raw))
        except DecodeError:
            log.error("Malformed stream frame", extra={"extra": {"frame": raw[:200]}})
            raise
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            log.error("Malformed stream frame", extra={"extra": {"frame": raw[:200], "error": str(e)}})
            raise DecodeError(code="DECODE_ERROR", message=f"malformed frame: {e}")


def decode_events(
    response: httpx.Response,
    parse: Callable[[Any], T],
    channel_size: int = 100,
) -> EventStream[T]:
    """为一次响应创建新的事件序列；每个请求都需要新的解码器。"""
    return EventStream(response, parse, channel_size=channel_size)
