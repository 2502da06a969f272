"""待提交的生成结果（PendingGeneration）。

单槽位、带标签的状态，只有三种取值：

- Idle: 没有生成在进行，UI 视为“就绪”。
- Streaming: 正在累积的回复（可选 role + 已收到的文本）。
- Failed: 生成失败，保留错误供 UI 显示并提供 Retry。

每次 begin() 分配新的 attempt 编号；所有写入都携带编号并在同一把锁内校验，
reset()（中止）会作废当前编号，之后旧任务的任何写入都会被忽略。
"""

import threading
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar, Union

from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import Role


T = TypeVar("T")


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Streaming:
    role: Optional[Role] = None
    content: str = ""


@dataclass(frozen=True)
class Failed:
    error: BusinessError


PendingState = Union[Idle, Streaming, Failed]

IDLE = Idle()


@dataclass(frozen=True)
class PendingView:
    """UI 每帧读取的只读视图：text 为部分回复或错误文本。"""

    text: str
    is_error: bool
    role: Optional[Role] = None


class PendingGeneration:
    def __init__(self):
        self._lock = threading.Lock()
        self._state: PendingState = IDLE
        self._attempt = 0

    @property
    def state(self) -> PendingState:
        with self._lock:
            return self._state

    def is_idle(self) -> bool:
        with self._lock:
            return isinstance(self._state, Idle)

    def view(self) -> Optional[PendingView]:
        """非阻塞读取；Idle 时返回 None。"""
        with self._lock:
            state = self._state
        if isinstance(state, Streaming):
            return PendingView(text=state.content, is_error=False, role=state.role)
        if isinstance(state, Failed):
            return PendingView(text=state.error.message, is_error=True)
        return None

    def begin(self, initial: str = "") -> int:
        """开始新的一次生成：状态置为累积器，返回本次 attempt 编号。"""
        with self._lock:
            self._attempt += 1
            self._state = Streaming(content=initial)
            return self._attempt

    def is_current(self, attempt: int) -> bool:
        with self._lock:
            return attempt == self._attempt

    def append(self, attempt: int, role: Optional[Role], text: Optional[str]) -> bool:
        """合并一次增量：已有 role 不会被缺省值覆盖，文本按到达顺序追加。"""
        with self._lock:
            state = self._state
            if attempt != self._attempt or not isinstance(state, Streaming):
                return False
            self._state = Streaming(
                role=role if role is not None else state.role,
                content=state.content + (text or ""),
            )
            return True

    def fail(self, attempt: int, error: BusinessError) -> bool:
        with self._lock:
            if attempt != self._attempt:
                return False
            self._state = Failed(error)
            return True

    def commit(self, attempt: int, apply: Callable[[Streaming], T]) -> Optional[T]:
        """在锁内取出累积结果并交给 apply 提交，随后回到 Idle。

        apply 抛出 BusinessError 时状态变为 Failed 并继续抛出；
        attempt 已被作废（中止）时什么都不做，返回 None。
        """
        with self._lock:
            state = self._state
            if attempt != self._attempt or not isinstance(state, Streaming):
                return None
            try:
                result = apply(state)
            except BusinessError as err:
                self._state = Failed(err)
                raise
            self._state = IDLE
            return result

    def reset(self) -> None:
        """清空状态并作废当前 attempt，由中止方调用。"""
        with self._lock:
            self._attempt += 1
            self._state = IDLE

    def discard(self, attempt: int) -> bool:
        """仅当 attempt 仍是当前编号时清空并作废它。"""
        with self._lock:
            if attempt != self._attempt:
                return False
            self._attempt += 1
            self._state = IDLE
            return True
