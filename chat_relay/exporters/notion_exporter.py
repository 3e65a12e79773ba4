"""Notion 导出器。

流程：
1. 校验 token 与 database id。
2. 在数据库中创建一个页面（单次调用），记下新页面 id。
3. 构造块列表：system prompt callout、每条消息一个 callout、附件摘要段落；
   单个块文本超过 2000 个 UTF-16 码元时切分为多个连续块。
4. 每 100 个块一批，依次追加到页面；任何一批失败都终止整个任务。
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from chat_relay.domain.exceptions import ConfigurationError, ProtocolError
from chat_relay.domain.models import ExportJob, Message, NotionConfig
from chat_relay.exporters.base import attachment_summary, export_title
from chat_relay.exporters.http import StageClient
from chat_relay.infrastructure.logging.events import LogSink, NullLog


BATCH_SIZE = 100
MAX_BLOCK_LENGTH = 2000

# role -> (icon, color)
_ROLE_STYLES = {
    "user": ("👤", "blue_background"),
    "assistant": ("🤖", "gray_background"),
    "system": ("⚠️", "yellow_background"),
}


def _utf16_units(ch: str) -> int:
    return 2 if ord(ch) > 0xFFFF else 1


def split_text(text: str, size: int = MAX_BLOCK_LENGTH) -> List[str]:
    """按 UTF-16 码元长度切分（Notion 的计数方式），不会拆开代理对。"""

    chunks: List[str] = []
    start = 0
    units = 0
    for i, ch in enumerate(text):
        width = _utf16_units(ch)
        if units + width > size:
            chunks.append(text[start:i])
            start = i
            units = 0
        units += width
    if start < len(text):
        chunks.append(text[start:])
    return chunks


def _rich_text(content: str, **annotations: bool) -> Dict[str, Any]:
    item: Dict[str, Any] = {"type": "text", "text": {"content": content}}
    if annotations:
        item["annotations"] = annotations
    return item


def _paragraph(content: str, **annotations: bool) -> Dict[str, Any]:
    return {
        "object": "block",
        "type": "paragraph",
        "paragraph": {"rich_text": [_rich_text(content, **annotations)]},
    }


def _callout(icon: str, color: str, rich_text: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "object": "block",
        "type": "callout",
        "callout": {"icon": {"emoji": icon}, "color": color, "rich_text": rich_text},
    }


def build_blocks(system_prompt: str, transcript: List[Message]) -> List[Dict[str, Any]]:
    blocks: List[Dict[str, Any]] = []

    if system_prompt and system_prompt.strip():
        chunks = split_text(system_prompt)
        blocks.append(
            _callout(
                "⚙️",
                "gray_background",
                [_rich_text("System Prompt:\n", bold=True), _rich_text(chunks[0])],
            )
        )
        blocks.extend(_paragraph(c) for c in chunks[1:])

    for message in transcript:
        icon, color = _ROLE_STYLES.get(message.role, _ROLE_STYLES["assistant"])
        chunks = split_text(message.content) or [" "]
        blocks.append(_callout(icon, color, [_rich_text(chunks[0])]))
        blocks.extend(_paragraph(c) for c in chunks[1:])
        if message.attachments:
            names = [att.name for att in message.attachments]
            blocks.append(_paragraph(attachment_summary(names), italic=True))

    return blocks


class NotionExporter:
    name = "notion"

    def __init__(
        self,
        sink: Optional[LogSink] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._log = sink or NullLog()
        self._http = StageClient("Notion", self._log, timeout=timeout, transport=transport)
        self._clock = clock

    async def export(self, job: ExportJob) -> None:
        cfg = job.config.notion
        self._validate(cfg)
        headers = {
            "Authorization": f"Bearer {cfg.token}",
            "Content-Type": "application/json",
            "Notion-Version": cfg.version,
        }
        base = cfg.api_base.rstrip("/")

        async with self._http.client() as client:
            page_id = await self._create_page(client, cfg, base, headers)
            blocks = build_blocks(job.system_prompt, list(job.transcript))
            total = (len(blocks) + BATCH_SIZE - 1) // BATCH_SIZE
            for i in range(0, len(blocks), BATCH_SIZE):
                batch = blocks[i:i + BATCH_SIZE]
                number = i // BATCH_SIZE + 1
                self._log.log(
                    "request",
                    f"Notion API: Appending Batch {number} of {total}",
                    {"batchSize": len(batch)},
                )
                await self._http.call(
                    client,
                    "append_blocks",
                    "Notion API Append",
                    "PATCH",
                    f"{base}/blocks/{page_id}/children",
                    headers=headers,
                    json={"children": batch},
                )
        self._log.log("info", "Notion export complete", {"pageId": page_id, "blocks": len(blocks)})

    @staticmethod
    def _validate(cfg: NotionConfig) -> None:
        if not (cfg.token or "").strip():
            raise ConfigurationError(code="MISSING_FIELD", message="Notion Token is required", stage="validate")
        if not (cfg.database_id or "").strip():
            raise ConfigurationError(
                code="MISSING_FIELD", message="Notion Database ID is required", stage="validate"
            )

    async def _create_page(
        self,
        client: httpx.AsyncClient,
        cfg: NotionConfig,
        base: str,
        headers: Dict[str, str],
    ) -> str:
        self._log.log("info", "Notion: Creating new page in database...")
        body = {
            "parent": {"database_id": cfg.database_id.strip()},
            "properties": {
                cfg.title_property: {"title": [{"text": {"content": export_title(self._clock())}}]},
            },
        }
        resp = await self._http.call(
            client,
            "create_page",
            "Create Notion page",
            "POST",
            f"{base}/pages",
            headers=headers,
            json=body,
            check=False,
        )
        if not resp.is_success:
            if f"body.properties.{cfg.title_property}" in resp.text:
                self._log.log("error", "Notion: title property mismatch", resp.text)
                raise ProtocolError(
                    code="TITLE_PROPERTY_MISMATCH",
                    message=(
                        f"Create Notion page: Could not find title property '{cfg.title_property}'. "
                        f"Please ensure your database title column is named '{cfg.title_property}'."
                    ),
                    stage="create_page",
                )
            raise self._http.api_error("create_page", "Create Notion page", resp)
        data = self._http.json_body("create_page", "Create Notion page", resp)
        page_id = data.get("id")
        if not page_id:
            raise ProtocolError(
                code="MISSING_ID",
                message="Create Notion page: response contained no page id",
                stage="create_page",
            )
        self._log.log("info", f"Notion: Page created successfully ({page_id})")
        return page_id

