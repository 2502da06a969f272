"""网络与协议集成层。

该包下的模块负责：
- 传输路径选择 (transport)：直连或经代理，构造时决定一次。
- 流式事件解码 (sse)：把分块响应体转换为协议事件序列。
- 接口适配 (openai_client)：请求体构造、鉴权头、错误映射。
- 端点与参数描述 (registry)。
"""

from typing import Optional

from chat_core.config.settings import Settings, settings
from chat_core.providers.openai_client import OpenAIClient
from chat_core.providers.transport import Transport, create_transport


def create_client(cfg: Optional[Settings] = None, transport: Optional[Transport] = None) -> OpenAIClient:
    """根据配置创建客户端，默认取模块级 settings。"""

    cfg = cfg or settings
    transport = transport or create_transport(cfg.http_proxy)
    return OpenAIClient(
        api_key=cfg.openai_api_key or "",
        transport=transport,
        base_url=cfg.api_base_url,
        channel_size=cfg.stream_channel_size,
    )
