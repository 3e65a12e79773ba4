"""事件日志（Logger sink）。

生成管线与导出管线在每个关键节点调用 ``log(category, summary, details)``：
客户端初始化、请求发出、第 N/M 批写入、流开始/结束以及所有失败。

EventLog 保存完整的条目历史供 UI 展示，同时镜像到 JSON 文件日志，
并可选地转发给监听回调。log() 永远不抛异常，也不阻塞调用方。
"""

import logging
from typing import Any, Callable, List, Optional, Protocol
from uuid import uuid4

from chat_relay.domain.models import LogCategory, LogEntry, utcnow
from chat_relay.infrastructure.logging.logger import logger


_LEVELS = {
    "info": logging.INFO,
    "request": logging.INFO,
    "response": logging.INFO,
    "error": logging.ERROR,
}


class LogSink(Protocol):
    def log(self, category: LogCategory, summary: str, details: Any = None) -> None:
        ...


class EventLog:
    """LogSink 的默认实现。"""

    def __init__(self, listener: Optional[Callable[[LogEntry], None]] = None):
        self._entries: List[LogEntry] = []
        self._listener = listener

    @property
    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def log(self, category: LogCategory, summary: str, details: Any = None) -> None:
        entry = LogEntry(
            id=uuid4().hex[:8],
            timestamp=utcnow(),
            category=category,
            summary=summary,
            details=details,
        )
        self._entries.append(entry)
        logger.log(
            _LEVELS.get(category, logging.INFO),
            summary,
            extra={"extra": {"category": category, "details": details}},
        )
        if self._listener is None:
            return
        try:
            self._listener(entry)
        except Exception:
            logger.warning("event listener failed", exc_info=True)

    def clear(self) -> None:
        self._entries = []


class NullLog:
    """丢弃所有事件，只写文件日志。"""

    def log(self, category: LogCategory, summary: str, details: Any = None) -> None:
        logger.log(_LEVELS.get(category, logging.INFO), summary, extra={"extra": {"category": category}})


def mask_secret(secret: str) -> str:
    """只保留前三个字符，用于在日志里展示凭据。"""

    if not secret:
        return ""
    return f"{secret[:3]}..."
