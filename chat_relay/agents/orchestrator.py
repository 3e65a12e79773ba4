"""生成编排核心模块。

一次生成的状态机：

    idle -> awaiting_first_delta -> streaming -> finished | failed

- 调用时同步追加 user 消息，并截取会话快照作为本次请求的历史。
- 第一个增量到达时才创建 assistant 消息（model 取调用时的模型名）。
- 后续增量只追加到 id 与本次生成记录一致的那条消息上。
- 失败时追加一条 system 消息说明错误，已经流入的文本保持原样。
- 会话被清空后（epoch 变化），属于旧会话的迟到事件全部忽略。
"""

import asyncio
from typing import Any, Callable, Iterable, Literal, Optional, Protocol

from chat_relay.domain.conversation import Conversation
from chat_relay.domain.exceptions import BusinessError
from chat_relay.domain.models import (
    Attachment,
    GenerationConfig,
    Message,
    ResolvedRequest,
    new_message_id,
)
from chat_relay.infrastructure.logging.events import LogSink, NullLog
from chat_relay.providers import create_provider
from chat_relay.providers.base import ProviderClient
from chat_relay.providers.registry import get_provider_config


GenerationState = Literal["idle", "awaiting_first_delta", "streaming", "finished", "failed"]

TERMINAL_STATES = ("finished", "failed")


class StreamCallbacks(Protocol):
    def on_chunk(self, text: str) -> None:
        ...

    def on_finish(self) -> None:
        ...

    def on_error(self, error: Exception) -> None:
        ...


def describe_error(error: Exception) -> str:
    if isinstance(error, BusinessError):
        return error.message
    return str(error) or type(error).__name__


async def run_stream(provider: ProviderClient, request: ResolvedRequest, callbacks: StreamCallbacks) -> None:
    """消费 provider 的增量流并转发给回调。

    保证恰好调用一次 on_finish 或 on_error：流正常耗尽时调用 on_finish，
    任何异常（包括已经产出部分增量之后）都只调用一次 on_error。
    取消（CancelledError）不在此捕获，由调用方放弃整个任务。
    """

    try:
        async for delta in provider.stream(request):
            callbacks.on_chunk(delta)
    except Exception as exc:
        callbacks.on_error(exc)
        return
    callbacks.on_finish()


class Generation:
    """单次生成，实现 StreamCallbacks。"""

    def __init__(self, conversation: Conversation, model_name: str, sink: LogSink):
        self._conversation = conversation
        self._epoch = conversation.epoch
        self._log = sink
        self.model_name = model_name
        self.assistant_message_id = new_message_id()
        self.state: GenerationState = "idle"
        self.error: Optional[Exception] = None

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def assistant_message(self) -> Optional[Message]:
        if self.state == "idle" or self.state == "awaiting_first_delta":
            return None
        return self._conversation.get(self.assistant_message_id)

    def _superseded(self) -> bool:
        return self._conversation.epoch != self._epoch

    def on_chunk(self, text: str) -> None:
        if self.done or self._superseded():
            self._log.log("info", "Ignored late delta", {"generation": self.assistant_message_id})
            return
        if self.state == "awaiting_first_delta":
            self._conversation.append(
                Message(
                    id=self.assistant_message_id,
                    role="assistant",
                    content=text,
                    model=self.model_name,
                )
            )
            self.state = "streaming"
            return
        target = self._conversation.get(self.assistant_message_id)
        if target is None:
            return
        target.content += text

    def on_finish(self) -> None:
        if self.done:
            return
        self.state = "finished"

    def on_error(self, error: Exception) -> None:
        if self.done:
            return
        self.state = "failed"
        self.error = error
        message = describe_error(error)
        self._log.log("error", "Generation Failed", message)
        if self._superseded():
            return
        self._conversation.append(Message(role="system", content=f"Error: {message}"))


class GenerationOrchestrator:
    """拥有一个会话，并驱动对该会话的生成。

    同一会话同时只允许一次生成，由调用方禁用发送入口来保证；
    本类不排队也不拒绝并发调用。
    """

    def __init__(
        self,
        conversation: Optional[Conversation] = None,
        sink: Optional[LogSink] = None,
        provider_factory: Callable[..., ProviderClient] = create_provider,
        **provider_options: Any,
    ):
        self.conversation = conversation or Conversation()
        self._log = sink or NullLog()
        self._provider_factory = provider_factory
        self._provider_options = provider_options

    def begin(
        self,
        content: str,
        attachments: Iterable[Attachment],
        config: GenerationConfig,
    ) -> tuple[Generation, ResolvedRequest]:
        """同步追加 user 消息并构造本次请求；provider 无效时不改动会话。"""

        provider_config = get_provider_config(config.provider)
        model_name = config.settings.model_name or provider_config.default_model
        user_message = Message(role="user", content=content, attachments=tuple(attachments))
        self.conversation.append(user_message)
        request = ResolvedRequest.build(config, self.conversation.snapshot())
        generation = Generation(self.conversation, model_name, self._log)
        generation.state = "awaiting_first_delta"
        return generation, request

    async def send(
        self,
        content: str,
        attachments: Iterable[Attachment],
        config: GenerationConfig,
    ) -> Generation:
        generation, request = self.begin(content, attachments, config)
        await self._drive(generation, request)
        return generation

    def start(
        self,
        content: str,
        attachments: Iterable[Attachment],
        config: GenerationConfig,
    ) -> tuple[Generation, "asyncio.Task[None]"]:
        """启动后台任务，调用方可以 await 它，也可以 cancel 放弃剩余增量。"""

        generation, request = self.begin(content, attachments, config)
        task = asyncio.create_task(self._drive(generation, request))
        return generation, task

    async def _drive(self, generation: Generation, request: ResolvedRequest) -> None:
        try:
            provider = self._provider_factory(request.provider, sink=self._log, **self._provider_options)
        except BusinessError as exc:
            generation.on_error(exc)
            return
        await run_stream(provider, request, generation)

    def clear(self) -> None:
        self.conversation.clear()
        self._log.log("info", "Chat history cleared")
