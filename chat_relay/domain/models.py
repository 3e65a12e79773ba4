"""统一的对话与配置数据模型。

本模块定义生成管线与导出管线之间共享的标准数据结构：

- Attachment / Message: 一条对话消息及其附件。
- ResolvedRequest: 每次生成时新建的、不可变的 Provider 请求快照。
- ProviderSettings / GenerationConfig: 调用方传入的生成配置。
- NotionConfig / FeishuConfig / ExportConfig / ExportJob: 导出配置与一次性导出任务。
- LogEntry: 事件日志条目。

除了正在流式写入的 assistant 消息外，所有结构一经构造都不再修改；
配置类统一使用 frozen dataclass，保证后续的配置编辑不会影响已经发出的调用。
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Tuple
from uuid import uuid4


# 消息角色（system 角色仅用于记录错误信息）
Role = Literal["user", "assistant", "system"]

AttachmentKind = Literal["image", "file"]

LogCategory = Literal["info", "request", "response", "error"]


class ProviderKind(str, Enum):
    """可选的模型后端。"""

    GEMINI = "Gemini"
    OPENAI = "OpenAI"
    VOLCENGINE = "Volcengine"
    ALIYUN = "Aliyun"


class ExportTarget(str, Enum):
    """可选的文档平台。"""

    NOTION = "Notion"
    FEISHU = "Feishu"


def new_message_id() -> str:
    return f"m-{uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Attachment:
    """消息附件。

    - kind: image 或 file。
    - name: 原始文件名，导出时用于生成附件摘要。
    - mime_type: MIME 类型，发送给 Provider 时必需。
    - data: base64 编码后的二进制内容。
    """

    kind: AttachmentKind
    name: str
    mime_type: str
    data: str


@dataclass
class Message:
    """一条对话消息。

    只有当前正在流式生成的 assistant 消息会被原地修改 content，
    其余消息创建后不再变化。
    """

    role: Role
    content: str
    id: str = field(default_factory=new_message_id)
    attachments: Tuple[Attachment, ...] = ()
    timestamp: datetime = field(default_factory=utcnow)
    model: Optional[str] = None

    def snapshot(self) -> "Message":
        """返回当前状态的独立副本（附件本身不可变，可直接共享元组）。"""

        return replace(self)


@dataclass(frozen=True)
class ProviderSettings:
    """单个 Provider 的连接配置。"""

    model_name: str = ""
    api_key: str = ""
    base_url: str = ""


@dataclass(frozen=True)
class PromptArgument:
    key: str
    value: str


@dataclass(frozen=True)
class GenerationConfig:
    """一次生成使用的配置快照。

    system_instruction 已经是解析后的最终文本。
    """

    provider: ProviderKind
    settings: ProviderSettings
    system_instruction: str = ""


@dataclass(frozen=True)
class ResolvedRequest:
    """发往 ProviderAdapter 的完整请求，构造后不再修改。"""

    provider: ProviderKind
    api_key: str
    model_name: str
    system_instruction: str
    history: Tuple[Message, ...]
    base_url: Optional[str] = None

    @classmethod
    def build(cls, config: GenerationConfig, history) -> "ResolvedRequest":
        return cls(
            provider=config.provider,
            api_key=config.settings.api_key,
            model_name=config.settings.model_name,
            system_instruction=config.system_instruction,
            history=tuple(m.snapshot() for m in history),
            base_url=config.settings.base_url or None,
        )


@dataclass(frozen=True)
class NotionConfig:
    token: str = ""
    database_id: str = ""
    title_property: str = "Name"
    api_base: str = "https://api.notion.com/v1"
    version: str = "2022-06-28"


@dataclass(frozen=True)
class FeishuConfig:
    app_id: str = ""
    app_secret: str = ""
    wiki_node_token: str = ""
    api_base: str = "https://open.feishu.cn/open-apis"


@dataclass(frozen=True)
class ExportConfig:
    target: ExportTarget
    notion: NotionConfig = field(default_factory=NotionConfig)
    feishu: FeishuConfig = field(default_factory=FeishuConfig)


@dataclass(frozen=True)
class ExportJob:
    """一次性导出任务。transcript 是构造时的快照，与在线会话互不影响。"""

    target: ExportTarget
    config: ExportConfig
    transcript: Tuple[Message, ...]
    system_prompt: str = ""

    @classmethod
    def build(cls, config: ExportConfig, transcript, system_prompt: str) -> "ExportJob":
        return cls(
            target=config.target,
            config=config,
            transcript=tuple(m.snapshot() for m in transcript),
            system_prompt=system_prompt or "",
        )


@dataclass(frozen=True)
class LogEntry:
    id: str
    timestamp: datetime
    category: LogCategory
    summary: str
    details: Any = None
