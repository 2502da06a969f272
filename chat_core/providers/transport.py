"""传输层选择器（Transport Selector）。

上层只依赖 Transport 协议的 send()：发出请求，拿到响应头后立即返回，
响应体保持为流，由 sse 解码器逐块读取。

具体走哪条网络路径在构造时决定一次：
- DirectTransport: 直连 TLS。
- ProxiedTransport: 经配置的转发代理，代理内部仍是 TLS 连接。

连接/DNS/TLS 错误统一折叠为 NetworkError，本层不做任何自动重试，
是否重试由用户在会话层决定。
"""

from typing import Optional, Protocol

import httpx

from chat_core.domain.exceptions import NetworkError
from chat_core.infrastructure.logging.logger import logger


# 核心不设超时：连接卡住时一直等待，直到传输层报错或用户中止
NO_TIMEOUT = httpx.Timeout(None)


class Transport(Protocol):
    """统一的“发请求、拿响应”能力。"""

    name: str

    def build_request(self, method: str, url: str, **kwargs) -> httpx.Request:
        ...

    async def send(self, request: httpx.Request) -> httpx.Response:
        ...

    async def aclose(self) -> None:
        ...


class _HttpxTransport:
    name = "httpx"

    def __init__(self, http_transport: httpx.AsyncBaseTransport):
        # trust_env=False：代理只来自显式配置，不从环境变量自动发现
        self._client = httpx.AsyncClient(
            transport=http_transport,
            timeout=NO_TIMEOUT,
            trust_env=False,
        )

    def build_request(self, method: str, url: str, **kwargs) -> httpx.Request:
        return self._client.build_request(method, url, **kwargs)

    async def send(self, request: httpx.Request) -> httpx.Response:
        """发送请求，只等待连接建立和响应头；响应体以流的形式返回。"""
        try:
            return await self._client.send(request, stream=True)
        except httpx.RequestError as e:
            logger.error(
                "Transport request failed",
                extra={"extra": {"transport": self.name, "url": str(request.url), "error": str(e)}},
            )
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)

    async def aclose(self) -> None:
        await self._client.aclose()


class DirectTransport(_HttpxTransport):
    """直连 TLS 路径。"""

    name = "direct"

    def __init__(self, http_transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(http_transport or httpx.AsyncHTTPTransport(verify=True))


class ProxiedTransport(_HttpxTransport):
    """经转发代理的路径，代理连接之上仍做 TLS。"""

    name = "proxied"

    def __init__(self, proxy_url: str, http_transport: Optional[httpx.AsyncBaseTransport] = None):
        self.proxy_url = proxy_url
        super().__init__(http_transport or httpx.AsyncHTTPTransport(proxy=proxy_url, verify=True))


def create_transport(
    proxy_url: Optional[str] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Transport:
    """根据是否配置了代理选择网络路径，构造后不再改变。

    http_transport 仅用于注入底层传输（测试时传入 httpx.MockTransport）。
    """

    if proxy_url:
        transport: Transport = ProxiedTransport(proxy_url, http_transport)
    else:
        transport = DirectTransport(http_transport)
    logger.info(
        "Transport selected",
        extra={"extra": {"transport": transport.name, "proxied": bool(proxy_url)}},
    )
    return transport
