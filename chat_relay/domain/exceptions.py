"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
生成管线与导出管线在边界处统一捕获并写入日志。

分类：
- ConfigurationError: 凭据/端点/模板缺失，网络调用之前即可发现。
- TransportError: 网络失败或非 2xx 响应（NetworkError / ApiError / RateLimitError）。
- ProtocolError: 响应结构不符合预期（例如缺少 id 字段）。
- StreamDecodeError: 单个流式帧无法解析，只记录日志，不终止整个流。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "MISSING_API_KEY"）。
        message: 用户可读错误信息。
        http_status: 上游 HTTP 状态码（若有），默认 400。
        extra: 其他补充字段（例如 stage、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)

    @property
    def stage(self) -> Optional[str]:
        """导出编排中失败的阶段名，非导出错误为 None。"""

        return self.extra.get("stage")


class ConfigurationError(BusinessError):
    """凭据、端点或模板配置缺失/无效。"""


class TransportError(BusinessError):
    """网络层或 HTTP 层错误。"""


class NetworkError(TransportError):
    """连接失败、DNS 失败等，没有拿到任何 HTTP 响应。"""


class ApiError(TransportError):
    """第三方 API 返回非 2xx 响应，或在 200 响应体中声明了失败。"""

    def __init__(self, code: str, message: str, http_status: int = 400, body: str = "", **extra):
        super().__init__(code, message, http_status=http_status, **extra)
        self.body = body


class RateLimitError(ApiError):
    """Provider 返回 429。本项目不做重试，直接上报。"""


class ProtocolError(BusinessError):
    """响应体与预期结构不符。"""


class StreamDecodeError(BusinessError):
    """单个 SSE 帧解析失败。"""
