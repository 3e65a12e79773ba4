"""导出器抽象接口。

每个文档平台实现一个 Exporter：把 ExportJob（会话快照 + 解析后的 system prompt）
转换成平台原生的块结构，并驱动对应 API 完成导出。
export() 要么正常返回，要么抛出描述性异常，不存在“部分成功”。
"""

from datetime import datetime
from typing import Protocol

from chat_relay.domain.models import ExportJob


class Exporter(Protocol):
    name: str

    async def export(self, job: ExportJob) -> None:
        ...


def export_title(now: datetime) -> str:
    return f"Chat Export - {now.strftime('%Y-%m-%d %H:%M:%S')}"


def attachment_summary(names) -> str:
    return f"[Attachments: {', '.join(names)}]"
