"""Logging setup for the CLI and worker processes.

Usage:
    from digest_engine.logging_config import configure_logging
    configure_logging(level="INFO", json_format=True)
"""

import json
import logging
import sys
import time
from typing import Any, Optional

# Extra attributes copied from log records into JSON lines
EXTRA_FIELDS = ("user_id", "job_id", "job_type", "attempt", "worker", "slice_key", "duration_ms")


class JSONFormatter(logging.Formatter):
    """One JSON object per log line.

    {"ts": "2026-10-19T08:00:00.123Z", "level": "INFO", "logger": "digest_engine.jobs.worker",
     "msg": "Job completed", "job_id": "job_...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created))
                  + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        if record.levelno >= logging.WARNING:
            entry["file"] = f"{record.filename}:{record.lineno}"

        if record.exc_info and record.exc_info[1]:
            entry["error"] = str(record.exc_info[1])
            entry["error_type"] = type(record.exc_info[1]).__name__

        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", json_format: Optional[bool] = False) -> None:
    """Configure the root logger once per process."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-5s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
    root.addHandler(handler)

    for noisy in ("httpcore", "httpx", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
