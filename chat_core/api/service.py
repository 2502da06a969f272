"""对外 API 服务模块。

UI 层通过 ChatService 管理命名会话：新建、删除、保存/加载，以及查询模型列表。
配置在这里读取一次，以普通值的形式交给传输层、客户端和控制器。
"""

from typing import Any, Dict, List, Optional

from chat_core.config.settings import Settings, settings
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import SYSTEM_ROLE, ChatMessage, ModelInfo, Session, TextCompletion
from chat_core.domain.session import SessionStore
from chat_core.engine.completion import CompletionController
from chat_core.engine.controller import GenerationController
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonSessionStore
from chat_core.providers import create_client
from chat_core.providers.openai_client import OpenAIClient
from chat_core.providers.transport import Transport


def _next_name(prefix: str, taken: Dict[str, Any]) -> str:
    """生成默认会话名 prefix_N，跳过已被占用的名字。"""
    index = len(taken) + 1
    while f"{prefix}_{index}" in taken:
        index += 1
    return f"{prefix}_{index}"


class ModelCatalog:
    """缓存最近一次 /models 查询结果，供模型选择面板读取。"""

    def __init__(self, client: OpenAIClient):
        self._client = client
        self.models: Optional[List[ModelInfo]] = None
        self.is_ready = True

    async def refresh(self) -> List[ModelInfo]:
        self.is_ready = False
        try:
            self.models = await self._client.list_models()
        finally:
            self.is_ready = True
        return self.models


class ChatService:
    def __init__(
        self,
        cfg: Optional[Settings] = None,
        transport: Optional[Transport] = None,
        store: Optional[JsonSessionStore] = None,
    ):
        cfg = cfg or settings
        self._client = create_client(cfg, transport)
        self._store = store or JsonSessionStore(cfg.sessions_file)
        self._system_message = cfg.system_message
        self._default_chat_model = cfg.default_chat_model
        self._default_completion_model = cfg.default_completion_model
        self._drop_blank_deltas = cfg.drop_blank_deltas
        self._chats: Dict[str, GenerationController] = {}
        self._completes: Dict[str, CompletionController] = {}
        self.models = ModelCatalog(self._client)

    @property
    def client(self) -> OpenAIClient:
        return self._client

    def new_chat(self, name: Optional[str] = None, session: Optional[Session] = None) -> GenerationController:
        """新建对话会话；未给 session 时带上配置中的默认 system 消息。

        同名的旧会话会被替换，其进行中的生成先被中止。
        """
        name = name or _next_name("chat", self._chats)
        self.remove_chat(name)
        if session is None:
            session = Session(model=self._default_chat_model)
            if self._system_message:
                session.messages.insert(0, self._system_message_record())
        controller = GenerationController(
            SessionStore(session),
            self._client,
            drop_blank_deltas=self._drop_blank_deltas,
        )
        self._chats[name] = controller
        logger.info("Created chat session", extra={"extra": {"name": name}})
        return controller

    def new_completion(
        self,
        name: Optional[str] = None,
        completion: Optional[TextCompletion] = None,
    ) -> CompletionController:
        name = name or _next_name("complete", self._completes)
        self.remove_completion(name)
        completion = completion or TextCompletion(model=self._default_completion_model)
        controller = CompletionController(self._client, completion)
        self._completes[name] = controller
        logger.info("Created completion session", extra={"extra": {"name": name}})
        return controller

    def get_chat(self, name: str) -> GenerationController:
        try:
            return self._chats[name]
        except KeyError:
            raise BusinessError(code="SESSION_NOT_FOUND", message=name, http_status=404)

    def get_completion(self, name: str) -> CompletionController:
        try:
            return self._completes[name]
        except KeyError:
            raise BusinessError(code="SESSION_NOT_FOUND", message=name, http_status=404)

    def remove_chat(self, name: str) -> Optional[GenerationController]:
        controller = self._chats.pop(name, None)
        if controller is not None and not controller.is_ready:
            controller.abort()
        return controller

    def remove_completion(self, name: str) -> Optional[CompletionController]:
        controller = self._completes.pop(name, None)
        if controller is not None and not controller.is_ready:
            controller.abort()
        return controller

    def list_sessions(self) -> Dict[str, List[str]]:
        return {"chat": list(self._chats), "complete": list(self._completes)}

    def save(self) -> None:
        self._store.save(
            {name: c.snapshot() for name, c in self._chats.items()},
            {name: c.snapshot() for name, c in self._completes.items()},
        )
        logger.info(
            "Saved sessions",
            extra={"extra": {"path": str(self._store.path), "chats": len(self._chats), "completes": len(self._completes)}},
        )

    def load(self) -> None:
        """从文件加载会话；同名会话会被替换。"""
        chats, completes = self._store.load()
        for name, session in chats.items():
            self.new_chat(name, session)
        for name, completion in completes.items():
            self.new_completion(name, completion)
        logger.info(
            "Loaded sessions",
            extra={"extra": {"path": str(self._store.path), "chats": len(chats), "completes": len(completes)}},
        )

    async def list_models(self) -> List[ModelInfo]:
        return await self.models.refresh()

    async def aclose(self) -> None:
        """中止所有进行中的生成并关闭连接池。"""
        for controller in list(self._chats.values()) + list(self._completes.values()):
            if not controller.is_ready:
                controller.abort()
        await self._client.transport.aclose()

    def _system_message_record(self) -> ChatMessage:
        return ChatMessage(role=SYSTEM_ROLE, content=self._system_message)


_service: Optional[ChatService] = None


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        _service = ChatService(settings)
    return _service
