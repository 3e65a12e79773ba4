"""对外 API 服务模块。

提供简化的函数接口供上层应用（UI）调用：

- generate(): 入站生成契约，回调 on_chunk / on_finish / on_error。
- export_chat_history(): 入站导出契约，成功返回，失败抛出描述性异常。
- ChatService: 持有一个会话的门面，负责模板解析与配置快照。
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from chat_relay.agents.orchestrator import Generation, GenerationOrchestrator, StreamCallbacks, run_stream
from chat_relay.config.settings import Settings, settings as default_settings
from chat_relay.domain.exceptions import ConfigurationError
from chat_relay.domain.models import (
    Attachment,
    ExportConfig,
    ExportJob,
    ExportTarget,
    FeishuConfig,
    GenerationConfig,
    Message,
    NotionConfig,
    PromptArgument,
    ProviderKind,
    ProviderSettings,
    ResolvedRequest,
)
from chat_relay.exporters import run_export
from chat_relay.infrastructure.logging.events import EventLog, LogSink
from chat_relay.prompts import apply_user_template, find_missing, resolve, validate_user_template
from chat_relay.providers import create_provider
from chat_relay.providers.registry import parse_provider_kind


@dataclass(frozen=True)
class ChatConfig:
    """调用方持有的完整生成配置（未解析的模板 + 各 Provider 设置）。"""

    provider: ProviderKind
    providers: Dict[ProviderKind, ProviderSettings]
    system_prompt_template: str = ""
    system_prompt_arguments: Tuple[PromptArgument, ...] = ()
    user_prompt_template: str = "{message}"

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "ChatConfig":
        providers = {
            ProviderKind.GEMINI: ProviderSettings(cfg.gemini_model, cfg.gemini_api_key or "", ""),
            ProviderKind.OPENAI: ProviderSettings(cfg.openai_model, cfg.openai_api_key or "", cfg.openai_base_url),
            ProviderKind.VOLCENGINE: ProviderSettings(
                cfg.volcengine_model, cfg.volcengine_api_key or "", cfg.volcengine_base_url
            ),
            ProviderKind.ALIYUN: ProviderSettings(cfg.aliyun_model, cfg.aliyun_api_key or "", cfg.aliyun_base_url),
        }
        return cls(
            provider=parse_provider_kind(cfg.default_provider),
            providers=providers,
            system_prompt_template=cfg.system_prompt_template,
            system_prompt_arguments=tuple(
                PromptArgument(a.get("key", ""), a.get("value", "")) for a in cfg.system_prompt_arguments
            ),
            user_prompt_template=cfg.user_prompt_template,
        )

    @property
    def resolved_system_prompt(self) -> str:
        return resolve(self.system_prompt_template, self.system_prompt_arguments)

    def generation_config(self) -> GenerationConfig:
        return GenerationConfig(
            provider=self.provider,
            settings=self.providers.get(self.provider, ProviderSettings()),
            system_instruction=self.resolved_system_prompt,
        )

    def validate(self) -> List[str]:
        """返回配置问题列表，供 UI 展示；为空表示可以发送。"""

        issues = validate_user_template(self.user_prompt_template)
        keys = [a.key for a in self.system_prompt_arguments]
        for name in find_missing(self.system_prompt_template, keys):
            issues.append(f"System prompt placeholder {{{name}}} has no argument.")
        return issues


def export_config_from_settings(cfg: Settings = default_settings) -> ExportConfig:
    return ExportConfig(
        target=ExportTarget(cfg.export_target),
        notion=NotionConfig(
            token=cfg.notion_token or "",
            database_id=cfg.notion_database_id or "",
            title_property=cfg.notion_title_property,
            api_base=cfg.notion_api_base,
            version=cfg.notion_version,
        ),
        feishu=FeishuConfig(
            app_id=cfg.feishu_app_id or "",
            app_secret=cfg.feishu_app_secret or "",
            wiki_node_token=cfg.feishu_wiki_node_token or "",
            api_base=cfg.feishu_api_base,
        ),
    )


async def generate(
    request: ResolvedRequest,
    callbacks: StreamCallbacks,
    sink: Optional[LogSink] = None,
    **provider_options: Any,
) -> None:
    """入站生成契约：恰好一次 on_finish 或 on_error。"""

    try:
        provider = create_provider(request.provider, sink=sink, **provider_options)
    except ConfigurationError as exc:
        callbacks.on_error(exc)
        return
    await run_stream(provider, request, callbacks)


async def export_chat_history(
    config: ExportConfig,
    transcript: Iterable[Message],
    resolved_system_prompt: str,
    sink: Optional[LogSink] = None,
    **options: Any,
) -> None:
    """入站导出契约：成功返回；失败抛出描述性异常，不返回部分结果。"""

    job = ExportJob.build(config, transcript, resolved_system_prompt)
    await run_export(job, sink=sink, **options)


class ChatService:
    """单会话门面：生成与导出共用同一个事件日志。"""

    def __init__(
        self,
        chat_config: ChatConfig,
        export_config: Optional[ExportConfig] = None,
        sink: Optional[LogSink] = None,
        timeout: Optional[float] = None,
        **transport_options: Any,
    ):
        self.chat_config = chat_config
        self.export_config = export_config
        self.events = sink or EventLog()
        self._timeout = timeout
        self._transport_options = transport_options
        self._orchestrator = GenerationOrchestrator(
            sink=self.events,
            timeout=timeout,
            **transport_options,
        )

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings, **kwargs: Any) -> "ChatService":
        return cls(
            ChatConfig.from_settings(cfg),
            export_config=export_config_from_settings(cfg),
            timeout=cfg.http_timeout,
            **kwargs,
        )

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self._orchestrator.conversation.messages

    async def send(self, text: str, attachments: Sequence[Attachment] = ()) -> Generation:
        """套用用户模板后发起一次生成；模板无效时不改动会话。"""

        template_issues = validate_user_template(self.chat_config.user_prompt_template)
        if template_issues:
            self.events.log("error", "Invalid user prompt template", template_issues)
            raise ConfigurationError(code="INVALID_TEMPLATE", message=template_issues[0])
        content = apply_user_template(self.chat_config.user_prompt_template, text)
        return await self._orchestrator.send(content, attachments, self.chat_config.generation_config())

    def clear(self) -> None:
        self._orchestrator.clear()

    async def export(self, export_config: Optional[ExportConfig] = None) -> None:
        config = export_config or self.export_config
        if config is None:
            raise ConfigurationError(code="MISSING_EXPORT_CONFIG", message="No export target configured")
        await export_chat_history(
            config,
            self.messages,
            self.chat_config.resolved_system_prompt,
            sink=self.events,
            timeout=self._timeout,
            **self._transport_options,
        )
