"""State shared by the Feishu export graph."""

from __future__ import annotations

from typing import Optional, TypedDict


class FeishuExportState(TypedDict, total=False):
    title: str
    tenant_token: Optional[str]
    space_id: Optional[str]
    document_id: Optional[str]
    node_token: Optional[str]
    batches_written: int
