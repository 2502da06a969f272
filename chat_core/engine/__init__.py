"""生成引擎：PendingGeneration 状态槽与对话/补全控制器。"""

from chat_core.engine.completion import CompletionController
from chat_core.engine.controller import GenerationController, GenerationHandle
from chat_core.engine.pending import PendingGeneration, PendingView

__all__ = [
    "CompletionController",
    "GenerationController",
    "GenerationHandle",
    "PendingGeneration",
    "PendingView",
]
