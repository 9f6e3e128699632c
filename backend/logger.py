"""JSON log output for StudyDesk RAG, enabled with LOG_FORMAT=json."""
import json
import logging
from datetime import datetime, timezone


class JSONFormatter(logging.Formatter):
    """One JSON object per line; fields passed as extra={"extra": {...}} are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        diagnostics = getattr(record, "extra", None)
        if isinstance(diagnostics, dict):
            entry.update(diagnostics)

        return json.dumps(entry, default=str)


def setup_logging(log_level: str = "INFO") -> None:
    """Route all log records through a single JSON handler on stderr."""
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=log_level.upper(), handlers=[handler], force=True)
