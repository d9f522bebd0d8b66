"""JSON-lines logging for the blueprint pipeline.

Every module gets its logger from setup_structured_logger(); records land in
LOG_DIR/<logger name>.jsonl, rotated at midnight and kept LOG_RETENTION_DAYS.
Structured fields travel as ``extra={"extra_fields": {...}}``.
"""

import json
import logging
import logging.handlers
import os
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

LOG_DIR = Path(os.getenv("LOG_DIR", "/tmp/blueprint_logs"))
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "7"))
STRUCTURED_LOG_LEVEL = os.getenv("STRUCTURED_LOG_LEVEL", "INFO").upper()
MAX_PAYLOAD_CHARS = 5000

LOG_DIR.mkdir(parents=True, exist_ok=True)


class JSONFormatter(logging.Formatter):
    """One JSON object per record: time, level, logger, message, source, extra_fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.lineno}",
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(getattr(record, "extra_fields", None) or {})
        return json.dumps(entry, default=str)


def setup_structured_logger(name: str) -> logging.Logger:
    """Logger writing to LOG_DIR/<name>.jsonl; repeated calls reuse the handler."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, STRUCTURED_LOG_LEVEL, logging.INFO))
    if logger.handlers:
        return logger

    handler = logging.handlers.TimedRotatingFileHandler(
        filename=LOG_DIR / f"{name}.jsonl",
        when="midnight",
        backupCount=LOG_RETENTION_DAYS,
        encoding="utf-8",
    )
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    return logger


def cleanup_old_logs(log_dir: Path = LOG_DIR, retention_days: int = LOG_RETENTION_DAYS) -> int:
    """Delete rotated log files untouched for retention_days. Returns how many went."""
    cutoff = time.time() - retention_days * 86400
    removed = 0
    for log_file in log_dir.glob("*.jsonl*"):
        try:
            if log_file.stat().st_mtime < cutoff:
                log_file.unlink()
                removed += 1
        except OSError as e:
            print(f"⚠️  Could not remove old log {log_file.name}: {e}", file=sys.stderr)
    if removed:
        print(f"🗑️  Removed {removed} old log file(s) from {log_dir}", file=sys.stderr)
    return removed


@contextmanager
def log_workflow(logger: logging.Logger, workflow_name: str, **context):
    """Log start, then complete or error (with duration_ms) around a block.

    Errors are re-raised after logging.
    """
    started = time.monotonic()

    def fields(phase: str, **more) -> Dict[str, Any]:
        elapsed = round((time.monotonic() - started) * 1000, 1)
        return {"extra_fields": {"workflow": workflow_name, "phase": phase, "duration_ms": elapsed, **more, **context}}

    logger.info(f"{workflow_name} started", extra=fields("start"))
    try:
        yield
    except Exception as e:
        logger.error(
            f"{workflow_name} failed",
            extra=fields("error", error=str(e), error_type=type(e).__name__, error_code=getattr(e, "code", None)),
            exc_info=True,
        )
        raise
    logger.info(f"{workflow_name} completed", extra=fields("complete"))


def log_generation_attempt(
    logger: logging.Logger,
    attempt_index: int,
    tier: str,
    model: str,
    outcome: str,
    duration_ms: float,
    detail: Optional[str] = None,
) -> None:
    level = logging.INFO if outcome == "success" else logging.WARNING
    logger.log(
        level,
        f"Generation attempt {attempt_index}: {outcome}",
        extra={
            "extra_fields": {
                "attempt_index": attempt_index,
                "tier": tier,
                "model": model,
                "outcome": outcome,
                "duration_ms": round(duration_ms, 1),
                "detail": detail,
            }
        },
    )


def log_data_structure(logger: logging.Logger, name: str, data: Any, level: str = "DEBUG") -> None:
    """Log a payload (dict, list or raw text), keeping at most MAX_PAYLOAD_CHARS of it."""
    if isinstance(data, (dict, list)):
        serialized = json.dumps(data, indent=2, default=str)
    else:
        serialized = str(data)

    fields: Dict[str, Any] = {"data_name": name, "full_size": len(serialized)}
    if len(serialized) > MAX_PAYLOAD_CHARS:
        fields["truncated"] = True
        fields["data_preview"] = serialized[:MAX_PAYLOAD_CHARS]
    else:
        fields["truncated"] = False
        fields["data"] = serialized
    logger.log(getattr(logging, level.upper(), logging.DEBUG), name, extra={"extra_fields": fields})


cleanup_old_logs()
