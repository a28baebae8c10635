from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

LOGGER_NAMESPACE = "cert_rotator"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _parse_int(value: str, name: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {value}") from exc
    if parsed < 0:
        raise ValueError(f"{name} must be >= 0, got: {value}")
    return parsed


def _resolve_level(level: str | int | None) -> int:
    resolved = level or os.environ.get("CERT_ROTATOR_LOG_LEVEL", DEFAULT_LOG_LEVEL)
    if not isinstance(resolved, str):
        return int(resolved)
    normalized = resolved.strip().upper()
    if normalized.isdigit():
        return int(normalized)
    numeric = getattr(logging, normalized, None)
    if not isinstance(numeric, int):
        raise ValueError(f"Invalid log level: {resolved}")
    return numeric


def _file_handler(
    log_file: Path,
    max_bytes: int | None,
    backup_count: int | None,
) -> RotatingFileHandler:
    if max_bytes is None:
        max_bytes = _parse_int(
            os.environ.get("CERT_ROTATOR_LOG_MAX_BYTES", str(DEFAULT_LOG_MAX_BYTES)),
            "CERT_ROTATOR_LOG_MAX_BYTES",
        )
    if backup_count is None:
        backup_count = _parse_int(
            os.environ.get("CERT_ROTATOR_LOG_BACKUP_COUNT", str(DEFAULT_LOG_BACKUP_COUNT)),
            "CERT_ROTATOR_LOG_BACKUP_COUNT",
        )
    if max_bytes < 0:
        raise ValueError("max_bytes must be >= 0.")
    if backup_count < 0:
        raise ValueError("backup_count must be >= 0.")

    log_file.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )


def _same_destination(
    existing: logging.Handler,
    log_file: Path | None,
    stream: TextIO,
) -> bool:
    if log_file is not None:
        return (
            isinstance(existing, RotatingFileHandler)
            and Path(existing.baseFilename).resolve() == log_file.resolve()
        )
    return (
        type(existing) is logging.StreamHandler
        and getattr(existing, "stream", None) is stream
    )


def configure_logging(
    *,
    log_file: str | Path | None = None,
    level: str | int | None = None,
    max_bytes: int | None = None,
    backup_count: int | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Configure the cert_rotator logger namespace.

    Logs go to stderr unless a log file is given, in which case a rotating
    file handler is installed. Calling this twice with the same destination
    only updates the level.

    Environment variable overrides:
    - CERT_ROTATOR_LOG_FILE
    - CERT_ROTATOR_LOG_LEVEL
    - CERT_ROTATOR_LOG_MAX_BYTES
    - CERT_ROTATOR_LOG_BACKUP_COUNT
    """

    raw_log_file = log_file or os.environ.get("CERT_ROTATOR_LOG_FILE")
    resolved_log_file = Path(str(raw_log_file)) if raw_log_file else None
    resolved_stream = stream or sys.stderr
    numeric_level = _resolve_level(level)

    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(numeric_level)
    logger.propagate = False

    for existing in logger.handlers:
        if _same_destination(existing, resolved_log_file, resolved_stream):
            existing.setLevel(numeric_level)
            return logger

    handler: logging.Handler
    if resolved_log_file is not None:
        handler = _file_handler(resolved_log_file, max_bytes, backup_count)
    else:
        handler = logging.StreamHandler(resolved_stream)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)

    logger.info(
        "Configured logging (destination=%s, level=%s)",
        resolved_log_file or "stderr",
        logging.getLevelName(numeric_level),
    )
    return logger
