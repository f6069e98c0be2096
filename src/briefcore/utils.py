from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import os
import sys
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


_LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(message)s"


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    pairs = " ".join(f"{key}={value}" for key, value in fields.items())
    logger.log(level, f"event={event} {pairs}".rstrip())


def configure_logging(logger_name: str, default_level: str = "INFO") -> logging.Logger:
    """Set up root logging once per process; later calls only add what is missing."""
    level = _level_from_name(os.environ.get("BC_LOG_LEVEL", default_level))
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    if not any(_writes_to_stdout(handler) for handler in root.handlers):
        root.addHandler(_formatted(logging.StreamHandler(sys.stdout), level))
    log_file = os.environ.get("BC_LOG_FILE")
    if log_file and not any(_writes_to_file(handler, log_file) for handler in root.handlers):
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        root.addHandler(_formatted(logging.FileHandler(log_file), level))
    for name, override in _parse_level_overrides(os.environ.get("BC_LOG_LEVELS", "")):
        logging.getLogger(name).setLevel(override)
    return logging.getLogger(logger_name)


def _level_from_name(name: str) -> int:
    value = logging.getLevelName(name.strip().upper())
    return value if isinstance(value, int) else logging.INFO


def _formatted(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    return handler


def _writes_to_stdout(handler: logging.Handler) -> bool:
    return isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stdout


def _writes_to_file(handler: logging.Handler, path: str) -> bool:
    return isinstance(handler, logging.FileHandler) and handler.baseFilename == os.path.abspath(path)


def _parse_level_overrides(raw: str) -> list[tuple[str, int]]:
    # "briefcore.queue=DEBUG,urllib3=WARNING"
    overrides = []
    for chunk in raw.split(","):
        name, sep, level = chunk.partition("=")
        if sep and name.strip():
            overrides.append((name.strip(), _level_from_name(level)))
    return overrides


def json_dumps(value: Any) -> str:
    return json.dumps(value, default=_encode_extra, sort_keys=True)


def _encode_extra(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return sorted(value, key=str) if isinstance(value, (set, frozenset)) else list(value)
    return str(value)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def isoformat_utc(value: datetime) -> str:
    # Fixed width so stored timestamps compare correctly as strings.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utc_now_iso() -> str:
    return isoformat_utc(utc_now())


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def truncate(value: str | None, max_length: int) -> str | None:
    if value is None:
        return None
    return value[:max_length] if len(value) > max_length else value


def stable_hash(*parts: object) -> str:
    joined = "|".join("" if part is None else str(part) for part in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


MAX_ERROR_LENGTH = 1024


def error_message(exc: BaseException, prefix: str = "") -> str:
    text = str(exc) or exc.__class__.__name__
    return truncate(f"{prefix}{text}", MAX_ERROR_LENGTH) or ""
