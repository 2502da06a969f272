"""会话存储（Session Store）。

持有唯一一份规范的 Session：控制器独占写入，UI 随时读取快照。
所有修改都在同一把锁内完成，读者拿到的要么是修改前、要么是修改后的完整记录。
"""

import threading
from typing import Any, List, Optional

from chat_core.domain.exceptions import ValidationError
from chat_core.domain.models import SYSTEM_ROLE, ChatMessage, Session


PARAMETER_NAMES = frozenset(
    {
        "model",
        "temperature",
        "top_p",
        "max_tokens",
        "presence_penalty",
        "frequency_penalty",
        "stop",
    }
)


class SessionStore:
    def __init__(self, session: Optional[Session] = None):
        self._session = session.copy() if session is not None else Session()
        self._lock = threading.Lock()

    def snapshot(self) -> Session:
        """返回当前 Session 的独立拷贝，供并发读者使用。"""
        with self._lock:
            return self._session.copy()

    @property
    def messages(self) -> List[ChatMessage]:
        with self._lock:
            return list(self._session.messages)

    def last_message(self) -> Optional[ChatMessage]:
        with self._lock:
            return self._session.messages[-1] if self._session.messages else None

    def append(self, message: ChatMessage) -> None:
        with self._lock:
            self._session.messages.append(message)

    def remove_last(self) -> Optional[ChatMessage]:
        """删除并返回最后一条消息；空会话时返回 None，不报错。"""
        with self._lock:
            if not self._session.messages:
                return None
            return self._session.messages.pop()

    def clear(self) -> None:
        with self._lock:
            self._session.messages.clear()

    def replace(self, session: Session) -> None:
        with self._lock:
            self._session = session.copy()

    # ---- 参数 ----

    def set_model(self, model: str) -> None:
        with self._lock:
            self._session.model = model

    def set_temperature(self, temperature: float) -> None:
        with self._lock:
            self._session.temperature = temperature

    def set_top_p(self, top_p: float) -> None:
        with self._lock:
            self._session.top_p = top_p

    def set_max_tokens(self, max_tokens: Optional[int]) -> None:
        with self._lock:
            self._session.max_tokens = max_tokens

    def set_presence_penalty(self, presence_penalty: float) -> None:
        with self._lock:
            self._session.presence_penalty = presence_penalty

    def set_frequency_penalty(self, frequency_penalty: float) -> None:
        with self._lock:
            self._session.frequency_penalty = frequency_penalty

    def set_stop(self, stop: Optional[List[str]]) -> None:
        with self._lock:
            self._session.stop = list(stop) if stop is not None else None

    def set_parameter(self, name: str, value: Any) -> None:
        """按名称设置参数，供通用参数面板使用；名称取自 PARAMETER_NAMES。"""
        if name not in PARAMETER_NAMES:
            raise ValidationError(code="UNKNOWN_PARAMETER", message=f"unknown parameter: {name}")
        if name == "stop":
            value = list(value) if value is not None else None
        with self._lock:
            setattr(self._session, name, value)

    # ---- system 消息 ----

    def get_system_message(self) -> Optional[str]:
        with self._lock:
            msgs = self._session.messages
            if msgs and msgs[0].role == SYSTEM_ROLE:
                return msgs[0].content
            return None

    def set_system_message(self, content: Optional[str]) -> None:
        """插入、更新或删除首条 system 消息。

        content 为 None 时只删除首条 system 消息；首条是 user 消息时不做任何事。
        """
        with self._lock:
            msgs = self._session.messages
            has_system = bool(msgs) and msgs[0].role == SYSTEM_ROLE
            if content is None:
                if has_system:
                    del msgs[0]
                return
            message = ChatMessage(role=SYSTEM_ROLE, content=content)
            if has_system:
                msgs[0] = message
            else:
                msgs.insert(0, message)
