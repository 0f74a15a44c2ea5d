"""Import run logging.

Every record written during an import run is stamped with the run's
import_id by ImportContextFilter, so library modules can keep using plain
module-level loggers. The file log rotates daily under data/logs/imports.log;
set STRUCTURED_LOGGING=1 to write it as JSON lines.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import uuid
from pathlib import Path

LOG_DIR = Path(__file__).resolve().parent.parent / "data" / "logs"
LOG_FILE = "imports.log"
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(import_id)s] %(name)s: %(message)s"

# JSON 出力に含めるコンテキスト属性
CONTEXT_FIELDS = ("import_id", "user_id", "account_id", "symbol")


class ImportContextFilter(logging.Filter):
    """Attach the current run's context (import_id etc.) to each record."""

    def __init__(self, import_id: str, **context: str) -> None:
        super().__init__()
        self.context = {"import_id": import_id, **context}

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, "")
            if value or key == "import_id":
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _structured_from_env() -> bool:
    return os.environ.get("STRUCTURED_LOGGING", "").lower() in ("true", "1")


def setup_logging(
    structured: bool = False,
    log_dir: Path | str | None = None,
    **context: str,
) -> str:
    """Point the root logger at the console and the rotating import log.

    Returns the import_id generated for this run. Extra keyword context
    (user_id, account_id) is stamped on every record alongside it.
    """
    import_id = uuid.uuid4().hex[:12]
    log_path = Path(log_dir) if log_dir else LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    context_filter = ImportContextFilter(import_id, **context)

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    # 既存ハンドラをクリア (重複防止)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    file_handler = logging.handlers.TimedRotatingFileHandler(
        log_path / LOG_FILE,
        when="midnight",
        backupCount=30,
        encoding="utf-8",
    )
    if structured or _structured_from_env():
        file_handler.setFormatter(JSONFormatter())
    else:
        file_handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(TEXT_FORMAT))

    for handler in (console, file_handler):
        handler.addFilter(context_filter)
        root.addHandler(handler)
    return import_id
