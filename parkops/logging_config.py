import json
import logging
import sys
from datetime import datetime, timezone

from parkops.config import Settings

REQUEST_FIELDS = ("method", "path", "status", "duration_ms")
ACTOR_FIELDS = ("actor_id", "actor_role")


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the log shipper."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in REQUEST_FIELDS + ACTOR_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = record.levelname
        color = self.LEVEL_COLORS.get(level)
        if color:
            level = f"{color}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"

        actor_id = getattr(record, "actor_id", None)
        if actor_id is not None:
            line += f" [actor {actor_id}/{getattr(record, 'actor_role', None) or '?'}]"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(config: Settings) -> None:
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    # At most one parkops handler on the root logger
    for handler in [h for h in root.handlers if getattr(h, "_parkops", False)]:
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if config.log_json else ReadableFormatter())
    handler.setLevel(level)
    handler._parkops = True
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("sqlalchemy.engine", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
