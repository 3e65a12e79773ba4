"""OpenAI 兼容 Provider 适配器（REST + SSE）。

覆盖 OpenAI、火山方舟、阿里云百炼等兼容 chat/completions 的后端：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>
- 请求体: model / messages / stream=true

响应按行解析：只处理以 ``data:`` 开头的帧，``[DONE]`` 直接丢弃，
其余帧解析为 JSON 后取 choices[0].delta.content 作为一个增量。
单个帧解析失败只记录日志并跳过，不会中断整个流。
"""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from chat_relay.domain.exceptions import (
    ApiError,
    ConfigurationError,
    NetworkError,
    RateLimitError,
    StreamDecodeError,
)
from chat_relay.domain.models import Message, ResolvedRequest
from chat_relay.infrastructure.logging.events import LogSink, NullLog, mask_secret


DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class OpenAICompatibleClient:
    """OpenAI 兼容协议的客户端实现。"""

    name = "openai-compatible"

    def __init__(
        self,
        sink: Optional[LogSink] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._log = sink or NullLog()
        self._timeout = timeout
        self._transport = transport

    async def stream(self, req: ResolvedRequest) -> AsyncIterator[str]:
        if not req.api_key:
            raise ConfigurationError(code="MISSING_API_KEY", message="API Key is required")
        if not req.base_url:
            raise ConfigurationError(code="MISSING_BASE_URL", message="Base URL is required")

        payload = self._build_payload(req)
        url = f"{req.base_url.rstrip('/')}/chat/completions"
        self._log.log(
            "request",
            f"POST {url}",
            {
                "headers": {
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {mask_secret(req.api_key)}",
                },
                "body": payload,
            },
        )
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, trust_env=False, transport=self._transport
            ) as client:
                async with client.stream(
                    "POST",
                    url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {req.api_key}",
                        "Content-Type": "application/json",
                    },
                ) as resp:
                    if not resp.is_success:
                        await resp.aread()
                        raise self._error_from_response(resp)
                    self._log.log("response", f"HTTP {resp.status_code} OK - Stream starting")
                    async for line in resp.aiter_lines():
                        try:
                            delta = self.parse_frame(line)
                        except StreamDecodeError as e:
                            self._log.log("error", "Skipping malformed stream frame", {"frame": e.extra.get("frame")})
                            continue
                        if delta:
                            yield delta
        except httpx.RequestError as e:
            self._log.log("error", "Request Failed", {"message": str(e)})
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        self._log.log("info", "Stream finished successfully")

    # ---- 辅助方法 ----

    @staticmethod
    def parse_frame(line: str) -> Optional[str]:
        """解析单行 SSE 帧，返回文本增量；非数据帧返回 None。"""

        if not line or not line.startswith(DATA_PREFIX):
            return None
        data_str = line[len(DATA_PREFIX):].strip()
        if not data_str or data_str == DONE_SENTINEL:
            return None
        try:
            chunk = json.loads(data_str)
        except json.JSONDecodeError:
            raise StreamDecodeError(code="BAD_FRAME", message="Error parsing chunk", frame=line)
        if not isinstance(chunk, dict):
            raise StreamDecodeError(code="BAD_FRAME", message="Chunk is not an object", frame=line)
        choices = chunk.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        return content if isinstance(content, str) and content else None

    def _build_payload(self, req: ResolvedRequest) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": req.system_instruction}]
        messages.extend(self._message_to_payload(m) for m in req.history)
        return {"model": req.model_name, "messages": messages, "stream": True}

    @staticmethod
    def _message_to_payload(message: Message) -> Dict[str, Any]:
        if not message.attachments:
            return {"role": message.role, "content": message.content}
        content: List[Dict[str, Any]] = [{"type": "text", "text": message.content}]
        for att in message.attachments:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{att.mime_type};base64,{att.data}"},
                }
            )
        return {"role": message.role, "content": content}

    def _error_from_response(self, resp: httpx.Response) -> ApiError:
        body = resp.text
        detail = None
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict):
                detail = err.get("message")
            elif isinstance(err, str):
                detail = err
        self._log.log("error", f"HTTP {resp.status_code}", data if data is not None else body)
        cls = RateLimitError if resp.status_code == 429 else ApiError
        return cls(
            code="API_ERROR",
            message=f"API Error: {resp.status_code} {detail or resp.reason_phrase}",
            http_status=resp.status_code,
            body=body,
        )
