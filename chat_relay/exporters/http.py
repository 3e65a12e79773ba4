"""导出管线共享的 HTTP 调用封装。

每次调用对应编排中的一个阶段（stage）：
- 发出请求前记录 request 日志；
- 网络失败包装为 NetworkError；
- 非 2xx 响应包装为 ApiError（附带状态码和响应体）；
所有错误都带上 stage，便于上层报告“哪一步失败了”。
"""

from typing import Any, Dict, Optional

import httpx

from chat_relay.domain.exceptions import ApiError, NetworkError, ProtocolError
from chat_relay.infrastructure.logging.events import LogSink


class StageClient:
    """按阶段发送 JSON 请求的薄封装，一个实例对应一次导出任务。"""

    def __init__(
        self,
        service: str,
        sink: LogSink,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.service = service
        self._log = sink
        self._timeout = timeout
        self._transport = transport

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, trust_env=False, transport=self._transport)

    async def call(
        self,
        client: httpx.AsyncClient,
        stage: str,
        label: str,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        params: Optional[Dict[str, str]] = None,
        check: bool = True,
    ) -> httpx.Response:
        """发送请求；check 为 True 时非 2xx 响应抛出带 stage 的异常。"""

        try:
            resp = await client.request(method, url, headers=headers, json=json, params=params)
        except httpx.RequestError as e:
            self._log.log("error", f"{self.service}: {label} request failed", {"message": str(e)})
            raise NetworkError(
                code="NETWORK_ERROR",
                message=f"{label} Failed: {e}",
                stage=stage,
            )
        if check and not resp.is_success:
            raise self.api_error(stage, label, resp)
        return resp

    def api_error(self, stage: str, label: str, resp: httpx.Response) -> ApiError:
        body = resp.text
        self._log.log("error", f"{self.service}: {label} failed", {"status": resp.status_code, "body": body})
        return ApiError(
            code="API_ERROR",
            message=f"{label} Failed ({resp.status_code}): {body}",
            http_status=resp.status_code,
            body=body,
            stage=stage,
        )

    @staticmethod
    def json_body(stage: str, label: str, resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            raise ProtocolError(
                code="BAD_RESPONSE",
                message=f"{label} returned a non-JSON body",
                stage=stage,
            )
        if not isinstance(data, dict):
            raise ProtocolError(code="BAD_RESPONSE", message=f"{label} returned an unexpected body", stage=stage)
        return data
