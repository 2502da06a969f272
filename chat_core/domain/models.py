"""统一的会话与流式协议数据模型。

本模块定义了引擎内部共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant），追加后不可变。
- Session: 一个打开的对话：有序消息 + 请求参数，字段与 chat/completions 请求体一一对应。
- TextCompletion: 旧版 completions 接口的会话记录（prompt/suffix + 参数）。
- ChatStreamChunk / CompletionChunk: 流中每个 "data:" 帧解析后的协议事件。
- ModelInfo: /models 接口返回的单个模型描述。

Session 与 TextCompletion 需要无损序列化（to_dict/from_dict），
持久化文件和请求体都直接使用 to_dict 的结果。
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional, get_args

from chat_core.domain.exceptions import DecodeError


# 消息角色（与 OpenAI chat 接口的 role 字段一致）
Role = Literal["system", "user", "assistant"]
ROLES = frozenset(get_args(Role))

SYSTEM_ROLE: Role = "system"
USER_ROLE: Role = "user"
ASSISTANT_ROLE: Role = "assistant"

DEFAULT_CHAT_MODEL = "gpt-3.5-turbo"
DEFAULT_COMPLETION_MODEL = "text-davinci-003"


def _check_role(value: Any) -> Role:
    if value not in ROLES:
        raise DecodeError(code="DECODE_ERROR", message=f"unknown role: {value!r}")
    return value


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息，追加到 Session 后不再修改。"""

    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(role=_check_role(data.get("role")), content=data.get("content") or "")


@dataclass
class Session:
    """一个对话的完整状态。

    - messages: 有序消息列表，至多一条 system 消息且约定位于首位。
    - 其余字段是生成参数；None 表示交给服务端默认值（如 max_tokens）。
    - stream 固定为 True，引擎只走流式接口。

    取值范围（temperature ∈ [0, 2] 等）由 UI 约束，这里原样保存并转发。
    """

    model: str = DEFAULT_CHAT_MODEL
    messages: List[ChatMessage] = field(default_factory=list)
    temperature: Optional[float] = 1.0
    top_p: Optional[float] = 1.0
    n: Optional[int] = 1
    stream: bool = True
    stop: Optional[List[str]] = None
    max_tokens: Optional[int] = None
    presence_penalty: Optional[float] = 0.0
    frequency_penalty: Optional[float] = 0.0

    def copy(self) -> "Session":
        # ChatMessage 不可变，浅拷贝列表即可得到独立快照
        return replace(
            self,
            messages=list(self.messages),
            stop=list(self.stop) if self.stop is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "temperature": self.temperature,
            "top_p": self.top_p,
            "n": self.n,
            "stream": self.stream,
            "stop": list(self.stop) if self.stop is not None else None,
            "max_tokens": self.max_tokens,
            "presence_penalty": self.presence_penalty,
            "frequency_penalty": self.frequency_penalty,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        stop = data.get("stop")
        return cls(
            model=data.get("model") or DEFAULT_CHAT_MODEL,
            messages=[ChatMessage.from_dict(m) for m in data.get("messages") or []],
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
            n=data.get("n"),
            stream=True,
            stop=list(stop) if stop is not None else None,
            max_tokens=data.get("max_tokens"),
            presence_penalty=data.get("presence_penalty"),
            frequency_penalty=data.get("frequency_penalty"),
        )


@dataclass
class TextCompletion:
    """旧版 completions 接口的会话：一段 prompt，可选 suffix（插入模式）。"""

    model: str = DEFAULT_COMPLETION_MODEL
    prompt: str = ""
    suffix: Optional[str] = None
    max_tokens: Optional[int] = 2048
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    n: Optional[int] = None
    stream: bool = True
    logprobs: Optional[int] = None

    def copy(self) -> "TextCompletion":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": self.prompt,
            "suffix": self.suffix,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "n": self.n,
            "stream": self.stream,
            "logprobs": self.logprobs,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TextCompletion":
        return cls(
            model=data.get("model") or DEFAULT_COMPLETION_MODEL,
            prompt=data.get("prompt") or "",
            suffix=data.get("suffix"),
            max_tokens=data.get("max_tokens"),
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
            n=data.get("n"),
            stream=True,
            logprobs=data.get("logprobs"),
        )


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatUsage":
        return cls(
            prompt_tokens=data.get("prompt_tokens", 0),
            completion_tokens=data.get("completion_tokens", 0),
            total_tokens=data.get("total_tokens", 0),
        )


@dataclass
class ServerErrorPayload:
    """帧中 error 字段：{message, type, param?, code?}。"""

    message: str
    type: Optional[str] = None
    param: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerErrorPayload":
        code = data.get("code")
        return cls(
            message=data.get("message") or "",
            type=data.get("type"),
            param=data.get("param"),
            code=str(code) if code is not None else None,
        )


@dataclass
class ChatDelta:
    """一次增量：role 和 content 都可能缺省。"""

    role: Optional[Role] = None
    content: Optional[str] = None


@dataclass
class ChatStreamChoice:
    index: int
    delta: ChatDelta
    finish_reason: Optional[str] = None


@dataclass
class ChatStreamChunk:
    """chat/completions 流中的单个帧。

    正常帧携带 choices[0].delta；出错时服务端只返回 error。
    """

    id: Optional[str] = None
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[ChatStreamChoice] = field(default_factory=list)
    usage: Optional[ChatUsage] = None
    error: Optional[ServerErrorPayload] = None

    @classmethod
    def from_dict(cls, data: Any) -> "ChatStreamChunk":
        if not isinstance(data, dict):
            raise DecodeError(code="DECODE_ERROR", message="stream frame is not a JSON object")
        choices: List[ChatStreamChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            delta_raw = ch.get("delta") or {}
            role = delta_raw.get("role")
            choices.append(
                ChatStreamChoice(
                    index=ch.get("index", i),
                    delta=ChatDelta(
                        role=_check_role(role) if role is not None else None,
                        content=delta_raw.get("content"),
                    ),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage")
        error_raw = data.get("error")
        return cls(
            id=data.get("id"),
            object=data.get("object"),
            created=data.get("created"),
            model=data.get("model"),
            choices=choices,
            usage=ChatUsage.from_dict(usage_raw) if usage_raw else None,
            error=ServerErrorPayload.from_dict(error_raw) if error_raw else None,
        )


@dataclass
class CompletionChoice:
    text: str
    index: int
    finish_reason: Optional[str] = None


@dataclass
class CompletionChunk:
    """completions 流中的单个帧，choices[0].text 为增量文本。"""

    id: Optional[str] = None
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: Optional[List[CompletionChoice]] = None
    usage: Optional[ChatUsage] = None
    error: Optional[ServerErrorPayload] = None

    @classmethod
    def from_dict(cls, data: Any) -> "CompletionChunk":
        if not isinstance(data, dict):
            raise DecodeError(code="DECODE_ERROR", message="stream frame is not a JSON object")
        choices = None
        if data.get("choices") is not None:
            choices = [
                CompletionChoice(
                    text=ch.get("text") or "",
                    index=ch.get("index", i),
                    finish_reason=ch.get("finish_reason"),
                )
                for i, ch in enumerate(data["choices"])
            ]
        usage_raw = data.get("usage")
        error_raw = data.get("error")
        return cls(
            id=data.get("id"),
            object=data.get("object"),
            created=data.get("created"),
            model=data.get("model"),
            choices=choices,
            usage=ChatUsage.from_dict(usage_raw) if usage_raw else None,
            error=ServerErrorPayload.from_dict(error_raw) if error_raw else None,
        )


@dataclass
class ModelInfo:
    """/models 列表中的一项。"""

    id: str
    object: str = "model"
    created: int = 0
    owned_by: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelInfo":
        return cls(
            id=data["id"],
            object=data.get("object") or "model",
            created=data.get("created") or 0,
            owned_by=data.get("owned_by") or "",
        )
