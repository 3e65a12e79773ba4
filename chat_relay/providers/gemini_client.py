"""Gemini Provider 适配器（会话式）。

使用 google-genai SDK 的 chat session：
1. 把历史消息（除最后一条）转换为 Content 列表，user -> "user"，其它角色 -> "model"。
2. 每条 Content 的 parts：先放每个附件的 inline 数据，最后放一个文本 part（文本为空也保留）。
3. 用解析后的 system instruction 和历史创建 session，再以流式方式发送最后一条消息。
"""

import base64
from typing import AsyncIterator, List, Optional

import httpx
from google import genai
from google.genai import errors, types

from chat_relay.domain.exceptions import ApiError, ConfigurationError, NetworkError, RateLimitError
from chat_relay.domain.models import Message, ResolvedRequest
from chat_relay.infrastructure.logging.events import LogSink, NullLog
from chat_relay.providers.registry import GEMINI_CONFIG


class GeminiClient:
    """Gemini 客户端实现。"""

    name = "gemini"

    def __init__(self, sink: Optional[LogSink] = None, timeout: Optional[float] = None):
        self._log = sink or NullLog()
        self._timeout = timeout

    async def stream(self, req: ResolvedRequest) -> AsyncIterator[str]:
        if not req.api_key:
            raise ConfigurationError(code="MISSING_API_KEY", message="Gemini API key is required")
        if not req.history:
            raise ConfigurationError(code="EMPTY_HISTORY", message="Nothing to send: history is empty")

        model_name = req.model_name or GEMINI_CONFIG.default_model
        self._log.log("info", "Initializing Gemini Client", {"model": model_name})
        client = genai.Client(api_key=req.api_key, http_options=self._http_options())
        try:
            chat_history = [self._to_content(m) for m in req.history[:-1]]
            chat = client.aio.chats.create(
                model=model_name,
                config=types.GenerateContentConfig(system_instruction=req.system_instruction),
                history=chat_history,
            )
            parts = self._to_parts(req.history[-1])
            self._log.log(
                "request",
                "Sending Message to Gemini",
                {
                    "model": model_name,
                    "historyLength": len(chat_history),
                    "currentMessageParts": len(parts),
                    "systemPrompt": req.system_instruction,
                },
            )
            async for text in self._send(chat, parts):
                yield text
        finally:
            await client.aio.aclose()
        self._log.log("response", "Stream finished")

    async def _send(self, chat, parts: List[types.Part]) -> AsyncIterator[str]:
        try:
            result = await chat.send_message_stream(parts)
            self._log.log("info", "Stream started")
            async for chunk in result:
                text = chunk.text
                if text:
                    yield text
        except errors.APIError as e:
            self._log.log("error", "Gemini Request Failed", {"code": e.code, "message": e.message})
            cls = RateLimitError if e.code == 429 else ApiError
            raise cls(
                code="API_ERROR",
                message=f"Gemini API Error: {e.code} {e.message or e.status or ''}".strip(),
                http_status=e.code or 500,
                provider=self.name,
            )
        except httpx.RequestError as e:
            self._log.log("error", "Gemini Request Failed", {"message": str(e)})
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)

    # ---- 辅助方法 ----

    def _http_options(self) -> Optional[types.HttpOptions]:
        if self._timeout is None:
            return None
        # HttpOptions.timeout 以毫秒计
        return types.HttpOptions(timeout=int(self._timeout * 1000))

    def _to_content(self, message: Message) -> types.Content:
        role = "user" if message.role == "user" else "model"
        return types.Content(role=role, parts=self._to_parts(message))

    @staticmethod
    def _to_parts(message: Message) -> List[types.Part]:
        parts = [
            types.Part.from_bytes(data=base64.b64decode(att.data), mime_type=att.mime_type)
            for att in message.attachments
        ]
        parts.append(types.Part(text=message.content or ""))
        return parts
