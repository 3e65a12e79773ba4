"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 种类与默认配置 (registry)。
- 提供两种协议风格的具体实现 (gemini_client、openai_client)。
"""

from typing import Optional

import httpx

from chat_relay.infrastructure.logging.events import LogSink
from chat_relay.providers.base import ProviderClient
from chat_relay.providers.gemini_client import GeminiClient
from chat_relay.providers.openai_client import OpenAICompatibleClient
from chat_relay.providers.registry import get_provider_config


def create_provider(
    kind,
    sink: Optional[LogSink] = None,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderClient:
    """根据 Provider 种类选择对应协议风格的客户端。"""

    cfg = get_provider_config(kind)
    if cfg.style == "session":
        return GeminiClient(sink=sink, timeout=timeout)
    return OpenAICompatibleClient(sink=sink, timeout=timeout, transport=transport)
