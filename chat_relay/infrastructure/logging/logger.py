import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from chat_relay.config.settings import settings


LOGGER_NAME = "chat_relay"
LOG_FILE = "chat_relay.log"

# 这些字段可能带有对话正文或提示词，脱敏时只保留长度
_CONTENT_KEYS = ("content", "systemPrompt", "body", "messages")


class JsonLinesFormatter(logging.Formatter):
    """每条记录输出一行 JSON；``extra={"extra": {...}}`` 会合并到顶层。"""

    def __init__(self, redact: bool = False):
        super().__init__()
        self.redact = redact

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        if self.redact:
            payload = self._redacted(payload)
        return json.dumps(payload, ensure_ascii=False, default=str)

    def _redacted(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        payload["msg"] = payload["msg"][:64]
        details = payload.get("details")
        if isinstance(details, dict):
            payload["details"] = {
                k: f"<{len(str(v))} chars>" if k in _CONTENT_KEYS else v for k, v in details.items()
            }
        return payload


def setup_logger(log_dir: Optional[str] = None, redact: Optional[bool] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return logger
    target = Path(log_dir or settings.log_dir)
    target.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(target / LOG_FILE, encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(
        JsonLinesFormatter(redact=settings.log_redact_content if redact is None else redact)
    )
    logger.addHandler(handler)
    return logger


logger = setup_logger()
