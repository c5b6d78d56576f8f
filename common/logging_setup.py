from __future__ import annotations

import json
import logging
import os
import sys
from typing import Any, Dict, Optional


_MARKER = "_tileserver_configured"


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, e.g.

      {"t": 1718000000123, "lvl": "INFO", "name": "tile_server.engine",
       "thread": "AnyIO worker thread", "msg": "engine ready", "extra": {"pool_size": 1}}

    Renders happen on the server's worker threads, so the thread name is
    always recorded.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "t": int(record.created * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload["extra"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # numpy scalars, Paths and enums fall back to str()
        return json.dumps(payload, ensure_ascii=False, default=str)


def _level(name: Optional[str]) -> int:
    lvl = logging.getLevelName((name or os.environ.get("LOG_LEVEL") or "INFO").upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: Optional[str] = None, force: bool = False) -> None:
    """
    Route the root logger to stdout as JSON lines.

    Only the first call takes effect unless `force` is set; the CLI forces a
    reconfigure after reading `logging.level` from the config file. Unknown
    level names fall back to INFO.
    """
    root = logging.getLogger()
    if getattr(root, _MARKER, False) and not force:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(level))
    setattr(root, _MARKER, True)


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
