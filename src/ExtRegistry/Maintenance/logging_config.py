"""
Structured Logging Utilities

Log setup for maintenance processes. Operators read the console; the JSONL
file is for tooling, so every record carries the job fields attached by the
worker (``job_id``, ``kind``, ``error_type``) and permanently failed jobs can be
filtered out of a day's log without parsing messages.
"""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import sys
from datetime import datetime, timedelta, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Iterable, Optional

from .config import LoggingConfig

ROOT_LOGGER_NAME = "ExtRegistry.Maintenance"
CONSOLE_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"
MASK = "***masked***"

_SENSITIVE_KEYS = frozenset(
    {"authorization", "api_key", "apikey", "token", "secret", "password", "private_key"}
)


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Replace the values of secret-looking keys.

    Examples:
        >>> mask_sensitive_data({"private_key": "abc", "status": "ok"})
        {'private_key': '***masked***', 'status': 'ok'}
    """
    return {key: MASK if key.lower() in _SENSITIVE_KEYS else value for key, value in payload.items()}


class JSONFormatter(logging.Formatter):
    """One JSON object per record; job fields from ``extra_fields`` are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, object] = {
            "timestamp": stamp.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        job_fields = getattr(record, "extra_fields", None)
        if isinstance(job_fields, dict):
            entry.update(job_fields)
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(entry), default=str)


def _older_than(files: Iterable[Path], cutoff: datetime) -> Iterable[Path]:
    for path in files:
        if datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc) < cutoff:
            yield path


def _apply_retention(log_dir: Path, retention_days: int) -> None:
    """Gzip day logs past retention; drop archives past twice that."""
    now = datetime.now(timezone.utc)
    for path in list(_older_than(log_dir.glob("maintenance-*.jsonl"), now - timedelta(days=retention_days))):
        with path.open("rb") as source, gzip.open(f"{path}.gz", "wb") as target:
            shutil.copyfileobj(source, target)
        path.unlink(missing_ok=True)
    for path in list(_older_than(log_dir.glob("maintenance-*.jsonl.gz"), now - timedelta(days=2 * retention_days))):
        path.unlink(missing_ok=True)


def _managed(handler: logging.Handler) -> logging.Handler:
    handler._extreg_managed = True  # type: ignore[attr-defined]
    return handler


def setup_logging(config: LoggingConfig, log_dir: Optional[Path] = None) -> logging.Logger:
    """Install the console handler and, when a directory is known, the JSONL file.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        config: Level, rotation size and retention.
        log_dir: Overrides ``config.log_dir``.

    Returns:
        The ``ExtRegistry.Maintenance`` logger.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(config.level)

    for handler in [h for h in logger.handlers if getattr(h, "_extreg_managed", False)]:
        logger.removeHandler(handler)
        handler.close()

    console = _managed(logging.StreamHandler(sys.stderr))
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    directory = log_dir or (Path(config.log_dir) if config.log_dir else None)
    if directory is not None:
        directory.mkdir(parents=True, exist_ok=True)
        _apply_retention(directory, config.retention_days)
        day = datetime.now(timezone.utc).strftime("%Y%m%d")
        jsonl = _managed(
            RotatingFileHandler(
                directory / f"maintenance-{day}.jsonl",
                maxBytes=int(config.max_log_size_mb * 1024 * 1024),
                backupCount=5,
                encoding="utf-8",
            )
        )
        jsonl.setFormatter(JSONFormatter())
        logger.addHandler(jsonl)

    return logger


__all__ = ["setup_logging", "mask_sensitive_data", "JSONFormatter", "ROOT_LOGGER_NAME"]
