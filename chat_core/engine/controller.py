"""生成控制器核心模块。

每个会话同一时间最多只有一次生成在进行（single-flight）：

    Idle → Sending → Streaming → Committed / Failed / Aborted → Idle

- Sending: 从 SessionStore 取快照构造请求，等待传输层返回响应头。
- Streaming: 逐帧折叠事件到 PendingGeneration，UI 每帧都能读到部分回复。
- Committed: 哨兵帧正常结束且内容非空，追加一条 assistant 消息。
- Failed: 传输/解码/服务端错误或空结果，错误留在 PendingGeneration，不追加消息。
- Aborted: 用户取消，由中止方清空状态，被取消的任务之后不会再写任何东西。

控制器本身不校验“最后一条是 user 消息”才允许 retry，
这个判断作为策略留给调用方（见 ready_to_retry）。
"""

import asyncio
import logging
import threading
from typing import Any, Dict, Generic, List, Optional, TypeVar
from uuid import uuid4

from chat_core.domain.exceptions import (
    ApiError,
    BusinessError,
    EmptyResultError,
    GenerationInProgressError,
)
from chat_core.domain.models import (
    ASSISTANT_ROLE,
    USER_ROLE,
    ChatMessage,
    ChatStreamChunk,
    ChatUsage,
    ServerErrorPayload,
    Session,
)
from chat_core.domain.session import SessionStore
from chat_core.engine.pending import PendingGeneration, PendingView, Streaming
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.openai_client import OpenAIClient
from chat_core.providers.sse import EventStream


T = TypeVar("T")

# 服务端偶尔会单独发出的空行增量；drop_blank_deltas=True 时丢弃
BLANK_FRAGMENTS = frozenset({"\n\n"})


def server_error(payload: ServerErrorPayload) -> ApiError:
    """把流中的 error 帧转换为 ApiError。"""
    return ApiError(
        code="API_ERROR",
        message=payload.message or payload.code or payload.type or "server error",
        error_type=payload.type,
        param=payload.param,
        error_code=payload.code,
    )


class GenerationHandle(Generic[T]):
    """后台生成任务的可取消引用；存在即表示“未就绪”。"""

    def __init__(self, task: "asyncio.Task[Optional[T]]", attempt: int):
        self._task = task
        self.attempt = attempt

    @property
    def task(self) -> "asyncio.Task[Optional[T]]":
        return self._task

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        self._task.cancel()

    async def wait(self) -> Optional[T]:
        """等待任务结束；失败或被中止时返回 None（错误可通过 get_generate 读取）。

        等待方自己被取消时照常抛出 CancelledError，生成任务不受影响。
        """
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.done() and self._task.cancelled():
                return None
            raise


class StreamingController(Generic[T]):
    """single-flight 生成流程的公共部分：占位、后台任务、中止与日志。

    子类实现 _open_stream / _fold / _commit 三个步骤。
    """

    kind = "generation"

    def __init__(self):
        self._pending = PendingGeneration()
        self._flight: Optional[int] = None
        # 正在执行本次 attempt 的任务（后台任务或 await generate() 的调用方）
        self._flight_task: Optional[asyncio.Task] = None
        self._flight_lock = threading.Lock()
        self._handle: Optional[GenerationHandle[T]] = None

    # ---- 读取 ----

    @property
    def pending(self) -> PendingGeneration:
        return self._pending

    @property
    def handle(self) -> Optional[GenerationHandle[T]]:
        return self._handle

    @property
    def is_ready(self) -> bool:
        with self._flight_lock:
            return self._flight is None

    def get_generate(self) -> Optional[PendingView]:
        """非阻塞读取 PendingGeneration，适合每次重绘调用；Idle 时为 None。"""
        return self._pending.view()

    # ---- 中止 ----

    def abort(self, handle: Optional[GenerationHandle[T]] = None) -> None:
        """取消正在进行的生成。

        不传 handle 时中止当前进行中的那一次（无论是 spawn_* 还是直接 await 的）。
        返回后 PendingGeneration 为空、控制器立即可用，
        被取消的任务不会再修改 SessionStore 或 PendingGeneration。
        """
        with self._flight_lock:
            if handle is not None:
                attempt: Optional[int] = handle.attempt
                task: Optional[asyncio.Task] = handle.task
            else:
                attempt = self._flight
                task = self._flight_task
            if attempt is not None and self._flight == attempt:
                self._flight = None
                self._flight_task = None
        if attempt is None:
            self._pending.reset()
        else:
            self._pending.discard(attempt)
        if task is not None and not task.done():
            task.cancel()
        if self._handle is not None and (self._handle is handle or self._handle.done()):
            self._handle = None
        self._log(logging.INFO, "Generation aborted", {"kind": self.kind, "attempt": attempt})

    # ---- 内部流程 ----

    def _ensure_idle(self) -> None:
        with self._flight_lock:
            if self._flight is not None:
                raise GenerationInProgressError(
                    code="GENERATION_IN_PROGRESS",
                    message="a generation is already running for this session",
                )

    def _acquire(self, initial: str = "") -> int:
        with self._flight_lock:
            if self._flight is not None:
                raise GenerationInProgressError(
                    code="GENERATION_IN_PROGRESS",
                    message="a generation is already running for this session",
                )
            attempt = self._pending.begin(initial)
            self._flight = attempt
            self._flight_task = None
            return attempt

    def _bind(self, attempt: int, task: Optional[asyncio.Task]) -> None:
        with self._flight_lock:
            if self._flight == attempt:
                self._flight_task = task

    def _release(self, attempt: int) -> None:
        with self._flight_lock:
            if self._flight == attempt:
                self._flight = None
                self._flight_task = None

    def _spawn(self, attempt: int) -> GenerationHandle[T]:
        task = asyncio.create_task(self._run_background(attempt))
        self._bind(attempt, task)
        handle: GenerationHandle[T] = GenerationHandle(task, attempt)
        self._handle = handle
        task.add_done_callback(lambda _: self._forget(handle))
        return handle

    def _forget(self, handle: GenerationHandle[T]) -> None:
        if self._handle is handle:
            self._handle = None

    async def _run_background(self, attempt: int) -> Optional[T]:
        try:
            return await self._run(attempt)
        except BusinessError:
            # 错误已经写入 PendingGeneration 并记录日志，由 UI 读取
            return None

    async def _run(self, attempt: int) -> Optional[T]:
        self._bind(attempt, asyncio.current_task())
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "kind": self.kind}
        try:
            events = await self._open_stream(log_ctx)
            async with events:
                async for event in events:
                    if not self._pending.is_current(attempt):
                        break
                    self._fold(attempt, event, log_ctx)
            result = self._pending.commit(attempt, self._commit)
        except BusinessError as err:
            self._record_failure(attempt, err, log_ctx)
            raise
        except asyncio.CancelledError:
            # 被外部取消而非 abort() 时也要清理，但只清理本次 attempt
            self._pending.discard(attempt)
            raise
        except Exception as e:
            # 请求构造等处的意外错误同样要落到 Failed，不能让 UI 停在 Streaming
            err = BusinessError(code="GENERATION_ERROR", message=str(e) or type(e).__name__)
            self._record_failure(attempt, err, log_ctx, exc_info=True)
            raise err from e
        finally:
            self._release(attempt)
        if result is not None:
            self._log(logging.INFO, "Generation committed", log_ctx)
        return result

    def _record_failure(
        self,
        attempt: int,
        err: BusinessError,
        log_ctx: Dict[str, Any],
        exc_info: bool = False,
    ) -> None:
        if self._pending.fail(attempt, err):
            payload = dict(log_ctx, code=err.code, error=err.message)
            logger.error("Generation failed", exc_info=exc_info, extra={"extra": payload})

    async def _open_stream(self, log_ctx: Dict[str, Any]) -> EventStream:
        raise NotImplementedError

    def _fold(self, attempt: int, event: Any, log_ctx: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _commit(self, state: Streaming) -> T:
        raise NotImplementedError

    def _log_usage(self, usage: Optional[ChatUsage], log_ctx: Dict[str, Any]) -> None:
        if usage is None:
            return
        self._log(
            logging.INFO,
            "Token usage",
            log_ctx,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})


class GenerationController(StreamingController[ChatMessage]):
    """对话会话的生成控制器。

    - question(text): 先追加 user 消息，再执行 generate()；无论生成结果如何，
      user 消息都保留，之后总可以 retry。
    - generate()/retry(): 从会话快照构造请求，折叠流式事件，成功时提交 assistant 消息。
    - spawn_*: 同样的流程放到后台任务里，返回 GenerationHandle 供 abort 使用。
    """

    kind = "chat"

    def __init__(
        self,
        store: SessionStore,
        client: OpenAIClient,
        *,
        drop_blank_deltas: bool = True,
    ):
        super().__init__()
        self._store = store
        self._client = client
        self.drop_blank_deltas = drop_blank_deltas

    @property
    def store(self) -> SessionStore:
        return self._store

    def snapshot(self) -> Session:
        return self._store.snapshot()

    @property
    def ready_to_retry(self) -> bool:
        """UI 是否应显示 Retry：没有生成在进行，且最后一条是 user 消息。"""
        last = self._store.last_message()
        return self.is_ready and last is not None and last.role == USER_ROLE

    # ---- 命令 ----

    async def question(self, text: str) -> Optional[ChatMessage]:
        self._ensure_idle()
        self._store.append(ChatMessage(role=USER_ROLE, content=text))
        return await self.generate()

    async def generate(self) -> Optional[ChatMessage]:
        """执行一次生成并等待结束。

        成功返回提交的 assistant 消息；失败时错误已写入 PendingGeneration，并继续抛出。
        """
        attempt = self._acquire()
        return await self._run(attempt)

    async def retry(self) -> Optional[ChatMessage]:
        return await self.generate()

    def spawn_question(self, text: str) -> GenerationHandle[ChatMessage]:
        self._ensure_idle()
        self._store.append(ChatMessage(role=USER_ROLE, content=text))
        return self.spawn_generate()

    def spawn_generate(self) -> GenerationHandle[ChatMessage]:
        attempt = self._acquire()
        return self._spawn(attempt)

    def spawn_retry(self) -> GenerationHandle[ChatMessage]:
        return self.spawn_generate()

    def remove_last(self) -> Optional[ChatMessage]:
        return self._store.remove_last()

    def clear(self) -> None:
        self._store.clear()

    # ---- 参数 ----

    def set_model(self, model: str) -> None:
        self._store.set_model(model)

    def set_temperature(self, temperature: float) -> None:
        self._store.set_temperature(temperature)

    def set_top_p(self, top_p: float) -> None:
        self._store.set_top_p(top_p)

    def set_max_tokens(self, max_tokens: Optional[int]) -> None:
        self._store.set_max_tokens(max_tokens)

    def set_presence_penalty(self, presence_penalty: float) -> None:
        self._store.set_presence_penalty(presence_penalty)

    def set_frequency_penalty(self, frequency_penalty: float) -> None:
        self._store.set_frequency_penalty(frequency_penalty)

    def set_stop(self, stop: Optional[List[str]]) -> None:
        self._store.set_stop(stop)

    def set_parameter(self, name: str, value: Any) -> None:
        self._store.set_parameter(name, value)

    def set_system_message(self, content: Optional[str]) -> None:
        self._store.set_system_message(content)

    def get_system_message(self) -> Optional[str]:
        return self._store.get_system_message()

    # ---- 折叠 ----

    async def _open_stream(self, log_ctx: Dict[str, Any]) -> EventStream[ChatStreamChunk]:
        session = self._store.snapshot()
        log_ctx["model"] = session.model
        self._log(
            logging.INFO,
            "Calling provider (stream)",
            log_ctx,
            provider=self._client.name,
            message_count=len(session.messages),
        )
        return await self._client.chat_stream(session)

    def _fold(self, attempt: int, chunk: ChatStreamChunk, log_ctx: Dict[str, Any]) -> None:
        if chunk.error is not None:
            raise server_error(chunk.error)
        self._log_usage(chunk.usage, log_ctx)
        if not chunk.choices:
            return
        delta = chunk.choices[0].delta
        text = delta.content
        if text and self.drop_blank_deltas and text in BLANK_FRAGMENTS:
            text = None
        if delta.role is None and not text:
            return
        self._pending.append(attempt, delta.role, text)

    def _commit(self, state: Streaming) -> ChatMessage:
        if not state.content:
            raise EmptyResultError(code="EMPTY_RESULT", message="No text generated")
        message = ChatMessage(role=ASSISTANT_ROLE, content=state.content)
        self._store.append(message)
        return message

