"""Chat Core 顶层包。

该包是桌面聊天客户端背后的生成引擎：把用户发出的消息变成
逐步更新的助手回复，容忍网络分块、流中错误、用户中止与重试。
包括配置加载、领域模型、传输层选择、流式解码、生成控制器与会话持久化。
"""

from chat_core.api.service import ChatService, get_default_service
from chat_core.engine import CompletionController, GenerationController, GenerationHandle

__all__ = [
    "ChatService",
    "CompletionController",
    "GenerationController",
    "GenerationHandle",
    "get_default_service",
]
