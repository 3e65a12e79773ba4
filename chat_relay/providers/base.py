"""Provider 抽象接口。

上层 GenerationOrchestrator 不直接依赖具体厂商的 SDK / HTTP 协议，而是依赖此协议：

- 每种协议风格实现一个 ProviderClient（GeminiClient、OpenAICompatibleClient）。
- 负责：把 ResolvedRequest 转成厂商请求，并把响应转换为统一的文本增量流。

stream() 是生成过程中唯一的挂起点：异步迭代器逐个产出非空文本增量，
正常耗尽即表示完成，抛出异常即表示失败。
"""

from typing import AsyncIterator, Protocol

from chat_relay.domain.models import ResolvedRequest


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    - name: Provider 名称，用于日志。
    - stream(req): 执行一次流式对话调用，逐步产出文本增量。
    """

    name: str

    def stream(self, req: ResolvedRequest) -> AsyncIterator[str]:
        ...
