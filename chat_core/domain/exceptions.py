"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
控制器在生成流程中统一捕获后写入 PendingGeneration，
UI 层只需要读取 message 渲染错误文本并提供 Retry。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "NETWORK_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、model 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误：DNS、TLS、连接失败，或读取响应体时连接中断。"""


class DecodeError(BusinessError):
    """流式响应中的帧无法解析（JSON 格式错误等）。"""


class ApiError(BusinessError):
    """服务端返回的结构化错误（无效请求、鉴权失败等）。

    既可能来自 HTTP 4xx/5xx 响应体，也可能来自流中带 error 字段的帧。
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        error_type: Optional[str] = None,
        param: Optional[str] = None,
        error_code: Optional[str] = None,
        **extra,
    ):
        super().__init__(code, message, http_status=http_status, **extra)
        self.error_type = error_type
        self.param = param
        self.error_code = error_code


class RateLimitError(ApiError):
    """Provider 限流错误（HTTP 429），是否重试由用户决定。"""


class EmptyResultError(BusinessError):
    """流正常结束但没有任何内容，拒绝提交空的助手消息。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class GenerationInProgressError(BusinessError):
    """同一会话已有生成任务在进行中（single-flight）。"""


class StoreError(BusinessError):
    """会话持久化读写失败。"""
