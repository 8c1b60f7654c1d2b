from __future__ import annotations

import logging
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "shikoku_router"
LOG_FILE_NAME = "routing.log.jsonl"

# Default severity per routing event; callers may still pass level= explicitly.
EVENT_LEVELS: dict[str, int] = {
    "route_search_request": logging.INFO,
    "route_search_failed": logging.WARNING,
    "nearest_node_request": logging.INFO,
    "route_graph_loaded": logging.INFO,
    "leg_search_timeout": logging.WARNING,
    "point_resolution_timeout": logging.WARNING,
    "graph_engine_error": logging.ERROR,
    "health_check_failed": logging.ERROR,
}


class RoutingJsonFormatter(jsonlogger.JsonFormatter):
    """Every record carries its level and the graph backend that served it."""

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("level", record.levelname)
        log_record.setdefault("logger", record.name)
        log_record.setdefault("graph_backend", settings.graph_backend)


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _log_dir_candidates(configured_out_dir: str) -> tuple[Path, ...]:
    return (
        Path(configured_out_dir) / "logs",
        Path.cwd() / "out" / "logs",
        Path(gettempdir()) / "shikoku-router" / "logs",
    )


def _writable_log_dir(configured_out_dir: str) -> Path | None:
    for log_dir in _log_dir_candidates(configured_out_dir):
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            probe = log_dir / ".writetest"
            probe.touch(exist_ok=True)
            probe.unlink(missing_ok=True)
        except OSError:
            continue
        return log_dir
    return None


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if getattr(logger, "_configured", False):
        return logger

    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False
    formatter = RoutingJsonFormatter()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_dir = _writable_log_dir(settings.out_dir)
    if log_dir is not None:
        try:
            handlers.append(logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8"))
        except OSError:
            pass
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def log_event(event: str, *, level: int | None = None, **fields: Any) -> None:
    """Emit one structured routing event; None-valued fields are left out."""
    global LOGGER
    if LOGGER is None:
        LOGGER = get_logger()
    resolved_level = EVENT_LEVELS.get(event, logging.INFO) if level is None else level
    extra = {key: value for key, value in fields.items() if value is not None}
    LOGGER.log(resolved_level, event, extra={"event": event, **extra})
