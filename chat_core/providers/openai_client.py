"""OpenAI 兼容接口适配器。

本模块负责：

1. 把 Session / TextCompletion 转换为 chat/completions、completions 请求体。
2. 加上 Bearer 鉴权头和 JSON Content-Type，通过 Transport 发出请求。
3. 把 HTTP 错误响应映射为统一的 ApiError / RateLimitError。
4. 把成功响应的流交给 sse 解码器，返回逐帧的协议事件。

另外提供 /models 列表查询，供模型选择面板使用。
"""

import json
from typing import Any, Dict, List, Tuple

import httpx

from chat_core.domain.exceptions import ApiError, DecodeError, NetworkError, RateLimitError, ValidationError
from chat_core.domain.models import ChatStreamChunk, CompletionChunk, ModelInfo, Session, TextCompletion
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import CHAT_COMPLETIONS_PATH, COMPLETIONS_PATH, MODELS_PATH
from chat_core.providers.sse import EventStream, decode_events
from chat_core.providers.transport import Transport


DEFAULT_BASE_URL = "https://api.openai.com/v1"


def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
    # 未设置的参数不发送，交给服务端默认值
    return {k: v for k, v in payload.items() if v is not None}


def build_chat_payload(session: Session) -> Dict[str, Any]:
    """将 Session 转成 chat/completions 请求 JSON。"""

    payload = _drop_none(session.to_dict())
    payload["stream"] = True
    return payload


def build_completion_payload(completion: TextCompletion) -> Dict[str, Any]:
    """将 TextCompletion 转成 completions 请求 JSON。"""

    payload = _drop_none(completion.to_dict())
    payload["stream"] = True
    return payload


def _parse_error_body(body: bytes) -> Tuple[str, Dict[str, Any]]:
    """从错误响应体中取出 error 对象；不是 JSON 时退回原始文本。"""

    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except ValueError:
        return text, {}
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return error.get("message") or text, error
    return text, {}


class OpenAIClient:
    """OpenAI 兼容接口客户端。

    - name: Provider 名称（供日志使用）。
    - chat_stream / completion_stream: 发出流式请求，返回事件序列。
    - list_models: 查询可用模型。
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        transport: Transport,
        base_url: str = DEFAULT_BASE_URL,
        channel_size: int = 100,
    ):
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        self._api_key = api_key
        self._transport = transport
        self._base_url = base_url.rstrip("/")
        self._channel_size = channel_size

    @property
    def transport(self) -> Transport:
        return self._transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def chat_stream(self, session: Session) -> EventStream[ChatStreamChunk]:
        """执行一次流式 chat 调用，返回逐帧的 ChatStreamChunk 序列。"""

        payload = build_chat_payload(session)
        logger.info(
            "Sending chat request",
            extra={"extra": {"model": session.model, "message_count": len(session.messages)}},
        )
        response = await self._post(CHAT_COMPLETIONS_PATH, payload)
        return decode_events(response, ChatStreamChunk.from_dict, channel_size=self._channel_size)

    async def completion_stream(self, completion: TextCompletion) -> EventStream[CompletionChunk]:
        """执行一次流式 completions 调用。"""

        payload = build_completion_payload(completion)
        logger.info(
            "Sending completion request",
            extra={"extra": {"model": completion.model, "prompt_chars": len(completion.prompt)}},
        )
        response = await self._post(COMPLETIONS_PATH, payload)
        return decode_events(response, CompletionChunk.from_dict, channel_size=self._channel_size)

    async def list_models(self) -> List[ModelInfo]:
        """GET /models，返回模型列表。"""

        request = self._transport.build_request(
            "GET",
            f"{self._base_url}{MODELS_PATH}",
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        response = await self._transport.send(request)
        await self._raise_for_status(response)
        try:
            body = await response.aread()
        except httpx.HTTPError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        finally:
            await response.aclose()
        try:
            data = json.loads(body)
            models = [ModelInfo.from_dict(item) for item in data.get("data", [])]
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            raise DecodeError(code="DECODE_ERROR", message=f"malformed models response: {e}")
        logger.info("Fetched models", extra={"extra": {"count": len(models)}})
        return models

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        request = self._transport.build_request(
            "POST",
            f"{self._base_url}{path}",
            json=payload,
            headers=self._headers(),
        )
        response = await self._transport.send(request)
        await self._raise_for_status(response)
        return response

    @staticmethod
    async def _raise_for_status(response: httpx.Response) -> None:
        """HTTP 错误统一包装为 ApiError；429 为 RateLimitError。"""

        if response.status_code < 400:
            return
        try:
            body = await response.aread()
        except httpx.HTTPError:
            body = b""
        finally:
            await response.aclose()
        message, error = _parse_error_body(body)
        message = message or f"HTTP {response.status_code}"
        logger.error(
            "API returned error status",
            extra={"extra": {"status": response.status_code, "error": message}},
        )
        fields = dict(
            http_status=response.status_code,
            error_type=error.get("type"),
            param=error.get("param"),
            error_code=str(error["code"]) if error.get("code") is not None else None,
        )
        if response.status_code == 429:
            # 限流错误交给用户决定是否重试
            raise RateLimitError(code="RATE_LIMIT", message=message, **fields)
        raise ApiError(code="API_ERROR", message=message, **fields)
