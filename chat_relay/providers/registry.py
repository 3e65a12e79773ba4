"""Provider 与默认配置。

本模块把“Provider 种类”与“协议风格”解耦：

- session: 厂商 SDK 的会话式接口（Gemini），端点内置在 SDK 中。
- rest_stream: OpenAI 兼容的 {base_url}/chat/completions SSE 接口，
  覆盖 OpenAI、火山方舟、阿里云百炼等。

上层只关心 ProviderKind，具体走哪种协议、默认模型是什么由这里集中配置。"""

from dataclasses import dataclass
from typing import Literal, Mapping

from chat_relay.domain.exceptions import ConfigurationError
from chat_relay.domain.models import ProviderKind


ProviderStyle = Literal["session", "rest_stream"]


@dataclass(frozen=True)
class ProviderConfig:
    """某个 Provider 的默认配置。"""

    kind: ProviderKind
    style: ProviderStyle
    base_url: str
    default_model: str
    model_placeholder: str

    @property
    def requires_base_url(self) -> bool:
        return self.style == "rest_stream"


GEMINI_CONFIG = ProviderConfig(
    kind=ProviderKind.GEMINI,
    style="session",
    base_url="",
    default_model="gemini-3-flash-preview",
    model_placeholder="gemini-3-flash-preview",
)

OPENAI_CONFIG = ProviderConfig(
    kind=ProviderKind.OPENAI,
    style="rest_stream",
    base_url="https://api.openai.com/v1",
    default_model="gpt-4o",
    model_placeholder="gpt-4o",
)

# 火山方舟的“模型名”实际是推理接入点 ID
VOLCENGINE_CONFIG = ProviderConfig(
    kind=ProviderKind.VOLCENGINE,
    style="rest_stream",
    base_url="https://ark.cn-beijing.volces.com/api/v3",
    default_model="",
    model_placeholder="Endpoint ID (ep-xxxx)",
)

ALIYUN_CONFIG = ProviderConfig(
    kind=ProviderKind.ALIYUN,
    style="rest_stream",
    base_url="https://dashscope.aliyuncs.com/compatible-mode/v1",
    default_model="qwen-plus",
    model_placeholder="qwen-plus",
)


PROVIDER_REGISTRY: Mapping[ProviderKind, ProviderConfig] = {
    ProviderKind.GEMINI: GEMINI_CONFIG,
    ProviderKind.OPENAI: OPENAI_CONFIG,
    ProviderKind.VOLCENGINE: VOLCENGINE_CONFIG,
    ProviderKind.ALIYUN: ALIYUN_CONFIG,
}


def parse_provider_kind(name) -> ProviderKind:
    """把名称解析为 ProviderKind，不区分大小写。"""

    if isinstance(name, ProviderKind):
        return name
    key = str(name or "").strip().lower()
    for kind in ProviderKind:
        if kind.value.lower() == key:
            return kind
    raise ConfigurationError(code="UNKNOWN_PROVIDER", message=f"Provider {name!r} not supported")


def get_provider_config(name) -> ProviderConfig:
    return PROVIDER_REGISTRY[parse_provider_kind(name)]
