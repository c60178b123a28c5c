"""
Process-wide logging configuration.

Library modules only ever call ``logging.getLogger(__name__)``; this is
the single place handlers and formats are installed, and only the CLI
calls it.

    text:  2024-01-15 10:30:00 [INFO] tinyserve.server: Server running on http://0.0.0.0:3000
    json:  {"time": "2024-01-15 10:30:00", "level": "INFO", "logger": "tinyserve.server", "message": "..."}
"""

import json
import logging


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """
    Configure the root logger.

    Args:
        level: Level name ("DEBUG", "INFO", ...); unknown names mean INFO
        fmt: "text" or "json"
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logging.basicConfig(level=numeric_level, handlers=[handler], force=True)
    logging.getLogger("tinyserve").setLevel(numeric_level)
