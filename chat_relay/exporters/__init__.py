"""文档平台导出层。

- base: Exporter 协议与共享的标题/附件摘要格式。
- http: 按阶段发送请求并包装错误的 StageClient。
- notion_exporter / feishu_exporter: 两个平台的具体实现。
"""

from typing import Optional

import httpx

from chat_relay.domain.exceptions import BusinessError, ConfigurationError
from chat_relay.domain.models import ExportJob, ExportTarget
from chat_relay.exporters.base import Exporter
from chat_relay.exporters.feishu_exporter import FeishuExporter
from chat_relay.exporters.notion_exporter import NotionExporter
from chat_relay.infrastructure.logging.events import LogSink, NullLog


def create_exporter(
    target,
    sink: Optional[LogSink] = None,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Exporter:
    """根据导出目标选择对应的 Exporter。"""

    try:
        target = ExportTarget(target)
    except ValueError:
        raise ConfigurationError(code="UNKNOWN_TARGET", message=f"Unsupported export target: {target}")
    if target is ExportTarget.NOTION:
        return NotionExporter(sink=sink, timeout=timeout, transport=transport)
    return FeishuExporter(sink=sink, timeout=timeout, transport=transport)


async def run_export(
    job: ExportJob,
    sink: Optional[LogSink] = None,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """执行一次导出任务；失败时记录 error 日志后原样抛出。"""

    log = sink or NullLog()
    log.log("info", f"Starting export to {job.target.value}")
    try:
        if not job.transcript:
            raise ConfigurationError(code="EMPTY_HISTORY", message="No chat history to export.", stage="validate")
        exporter = create_exporter(job.target, sink=log, timeout=timeout, transport=transport)
        await exporter.export(job)
    except BusinessError as e:
        log.log("error", "Export Failed", {"message": e.message, "stage": e.stage})
        raise
