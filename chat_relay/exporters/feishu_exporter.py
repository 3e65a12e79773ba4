"""飞书知识库导出器。

多阶段编排，每一步都依赖上一步得到的标识，严格串行：

1. validate: 校验 app id / app secret / 父节点 token（去掉复制粘贴带来的引号）。
2. auth: 用 app id + secret 换取 tenant_access_token。
3. resolve_space: 通过父节点 token 查询所属知识空间 id。
4. create_document: 创建一个独立的空白 docx 文档。
5. attach_to_wiki: 把文档挂到知识空间的父节点下，得到最终文档 id。
6. write_blocks: 每 50 个块一批写入最终文档。

某一步失败时后续步骤不会执行；已经完成的步骤不做回滚
（例如创建成功但挂载失败的文档会被遗留）。
"""

import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from chat_relay.domain.exceptions import ApiError, ConfigurationError, ProtocolError
from chat_relay.domain.models import ExportJob, FeishuConfig, Message
from chat_relay.exporters.base import attachment_summary, export_title
from chat_relay.exporters.http import StageClient
from chat_relay.flows.graph import build_linear_graph
from chat_relay.flows.state import FeishuExportState
from chat_relay.infrastructure.logging.events import LogSink, NullLog


BATCH_SIZE = 50

# docx block_type
BLOCK_TEXT = 2
BLOCK_HEADING1 = 3
BLOCK_HEADING3 = 5

_ROLE_HEADERS = {
    "user": "👤 User",
    "assistant": "🤖 Assistant",
    "system": "⚠️ System",
}

_QUOTES_RE = re.compile(r"""^["']|["']$""")


def unwrap_token(raw: Optional[str]) -> str:
    return _QUOTES_RE.sub("", (raw or "").strip())


def _text_run(content: str, **style: bool) -> Dict[str, Any]:
    return {"text_run": {"content": content, "text_element_style": style}}


def _heading1(content: str) -> Dict[str, Any]:
    return {"block_type": BLOCK_HEADING1, "heading1": {"elements": [_text_run(content, bold=True)], "style": {}}}


def _heading3(content: str) -> Dict[str, Any]:
    return {"block_type": BLOCK_HEADING3, "heading3": {"elements": [_text_run(content, bold=True)], "style": {}}}


def _text(content: str, **style: bool) -> Dict[str, Any]:
    return {"block_type": BLOCK_TEXT, "text": {"elements": [_text_run(content, **style)], "style": {}}}


def build_blocks(title: str, system_prompt: str, transcript: List[Message]) -> List[Dict[str, Any]]:
    children: List[Dict[str, Any]] = [_heading1(title)]

    if system_prompt and system_prompt.strip():
        children.append(_heading3("⚙️ System Prompt"))
        children.append(_text(system_prompt))
        children.append(_text(" "))

    for message in transcript:
        children.append(_heading3(_ROLE_HEADERS.get(message.role, _ROLE_HEADERS["assistant"])))
        if message.content and message.content.strip():
            children.append(_text(message.content))
        if message.attachments:
            children.append(_text(attachment_summary(a.name for a in message.attachments), italic=True))
        children.append(_text(" "))

    return children


class FeishuExporter:
    name = "feishu"

    def __init__(
        self,
        sink: Optional[LogSink] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._log = sink or NullLog()
        self._http = StageClient("Feishu", self._log, timeout=timeout, transport=transport)
        self._clock = clock

    async def export(self, job: ExportJob) -> None:
        cfg = job.config.feishu
        app_id = (cfg.app_id or "").strip()
        app_secret = (cfg.app_secret or "").strip()
        wiki_token = unwrap_token(cfg.wiki_node_token)
        if not app_id or not app_secret or not wiki_token:
            raise ConfigurationError(
                code="MISSING_FIELD",
                message="Feishu configuration (App ID, Secret, Wiki Token) is incomplete.",
                stage="validate",
            )

        title = export_title(self._clock())
        async with self._http.client() as client:
            run = _FeishuRun(self._http, self._log, client, cfg, job, app_id, app_secret, wiki_token)
            graph = build_linear_graph(
                [
                    ("auth", run.auth),
                    ("resolve_space", run.resolve_space),
                    ("create_document", run.create_document),
                    ("attach_to_wiki", run.attach_to_wiki),
                    ("write_blocks", run.write_blocks),
                ]
            )
            await graph.ainvoke({"title": title})
        self._log.log("info", "Feishu Wiki Export Complete")


class _FeishuRun:
    """一次导出任务的各阶段实现，作为 graph 的节点。"""

    def __init__(
        self,
        http: StageClient,
        sink: LogSink,
        client: httpx.AsyncClient,
        cfg: FeishuConfig,
        job: ExportJob,
        app_id: str,
        app_secret: str,
        wiki_token: str,
    ):
        self._http = http
        self._log = sink
        self._client = client
        self._base = cfg.api_base.rstrip("/")
        self._job = job
        self._app_id = app_id
        self._app_secret = app_secret
        self._wiki_token = wiki_token

    async def _post_json(self, stage: str, label: str, method: str, url: str, token: Optional[str] = None, **kw) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json; charset=utf-8"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        resp = await self._http.call(self._client, stage, label, method, url, headers=headers, **kw)
        data = self._http.json_body(stage, label, resp)
        if data.get("code") != 0:
            self._log.log("error", f"Feishu: {label} returned code {data.get('code')}", data)
            raise ApiError(
                code="API_ERROR",
                message=f"{label} Error ({data.get('code')}): {data.get('msg')}",
                http_status=resp.status_code,
                body=resp.text,
                stage=stage,
            )
        return data

    async def auth(self, state: FeishuExportState) -> Dict[str, Any]:
        self._log.log("info", "Feishu: Getting Tenant Access Token")
        data = await self._post_json(
            "auth",
            "Feishu Auth",
            "POST",
            f"{self._base}/auth/v3/tenant_access_token/internal",
            json={"app_id": self._app_id, "app_secret": self._app_secret},
        )
        token = data.get("tenant_access_token")
        if not token:
            raise ProtocolError(code="MISSING_TOKEN", message="Feishu Auth: response contained no tenant_access_token", stage="auth")
        self._log.log("info", "Feishu: Token acquired")
        return {"tenant_token": token}

    async def resolve_space(self, state: FeishuExportState) -> Dict[str, Any]:
        self._log.log("info", f"Feishu: Resolving Space ID for token '{self._wiki_token}'")
        data = await self._post_json(
            "resolve_space",
            "Get Node Info",
            "GET",
            f"{self._base}/wiki/v2/spaces/get_node",
            token=state["tenant_token"],
            params={"token": self._wiki_token},
        )
        body = data.get("data") or {}
        space_id = (body.get("node") or {}).get("space_id") or (body.get("space") or {}).get("space_id")
        if not space_id:
            self._log.log("error", "Node Info Data", data)
            raise ProtocolError(
                code="MISSING_SPACE_ID",
                message="Get Node Info: Could not extract Space ID from Node Info",
                stage="resolve_space",
            )
        self._log.log("info", f"Feishu: Resolved Space ID: {space_id}")
        return {"space_id": str(space_id)}

    async def create_document(self, state: FeishuExportState) -> Dict[str, Any]:
        title = state["title"]
        self._log.log("info", f'Feishu: Creating blank Docx: "{title}"')
        data = await self._post_json(
            "create_document",
            "Create Doc",
            "POST",
            f"{self._base}/docx/v1/documents",
            token=state["tenant_token"],
            json={"title": title},
        )
        doc_id = ((data.get("data") or {}).get("document") or {}).get("document_id")
        if not doc_id:
            raise ProtocolError(
                code="MISSING_ID",
                message="Create Doc: response contained no document_id",
                stage="create_document",
            )
        self._log.log("info", f"Feishu: Blank document created ({doc_id})")
        return {"document_id": doc_id}

    async def attach_to_wiki(self, state: FeishuExportState) -> Dict[str, Any]:
        self._log.log("info", f"Feishu: Moving document to Wiki under node '{self._wiki_token}'")
        data = await self._post_json(
            "attach_to_wiki",
            "Move to Wiki",
            "POST",
            f"{self._base}/wiki/v2/spaces/{state['space_id']}/nodes",
            token=state["tenant_token"],
            json={
                "parent_node_token": self._wiki_token,
                "obj_token": state["document_id"],
                "obj_type": "docx",
                "node_type": "origin",
                "title": state["title"],
            },
        )
        final_id = ((data.get("data") or {}).get("node") or {}).get("obj_token")
        if not final_id:
            raise ProtocolError(
                code="MISSING_ID",
                message="Move to Wiki: response contained no obj_token",
                stage="attach_to_wiki",
            )
        self._log.log("info", f"Feishu: Document successfully added to Wiki. ID: {final_id}")
        return {"node_token": final_id}

    async def write_blocks(self, state: FeishuExportState) -> Dict[str, Any]:
        doc_id = state["node_token"]
        blocks = build_blocks(state["title"], self._job.system_prompt, list(self._job.transcript))
        url = f"{self._base}/docx/v1/documents/{doc_id}/blocks/{doc_id}/children"
        total = (len(blocks) + BATCH_SIZE - 1) // BATCH_SIZE
        written = 0
        for i in range(0, len(blocks), BATCH_SIZE):
            batch = blocks[i:i + BATCH_SIZE]
            self._log.log("request", f"Feishu: Writing content batch {i // BATCH_SIZE + 1} of {total}")
            await self._post_json(
                "write_blocks",
                "Write Content",
                "POST",
                url,
                token=state["tenant_token"],
                json={"children": batch},
            )
            written += 1
        return {"batches_written": written}
