# apps/backend/bookin/logging_config.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from . import config

# LogRecord 本身就有嘅欄位；其餘（extra=...）會併入 JSON
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """一行一個 JSON record，方便 Cloud Logging / Render 搜尋。"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def configure_logging(level: str | None = None, json_enabled: bool | None = None) -> None:
    level_name = (level or config.get("LOG_LEVEL", "INFO") or "INFO").upper()
    use_json = config.get_bool("LOG_JSON", False) if json_enabled is None else json_enabled

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))
