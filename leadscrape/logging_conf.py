"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Iterable

import structlog

_LOGGING_INITIALISED = False
ROOT_LOGGER = "leadscrape"


def _default_log_dir() -> Path:
    env_root = os.environ.get("LEADSCRAPE_HOME")
    root = Path(env_root).expanduser() if env_root else Path.cwd()
    return root.resolve() / "logs"


def _slug(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return the application logger."""

    global _LOGGING_INITIALISED
    log_dir = _default_log_dir()
    error_log = log_dir / "error.log"
    app_log = log_dir / "leadscrape.log"
    (log_dir / "sources").mkdir(parents=True, exist_ok=True)

    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "json": {
                        "()": "pythonjsonlogger.json.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": level,
                        "formatter": "json",
                    },
                    "app_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(app_log),
                        "formatter": "json",
                        "encoding": "utf-8",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "json",
                        "encoding": "utf-8",
                    },
                },
                "loggers": {
                    ROOT_LOGGER: {
                        "handlers": ["console", "app_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        # Event dict keys become JSON fields through the stdlib `extra` mapping.
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.render_to_log_kwargs,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger(ROOT_LOGGER)


def source_logger(source_name: str, verbose: bool = False) -> structlog.BoundLogger:
    """Return a logger bound to a source that also writes ``logs/sources/<slug>.log``."""

    configure_logging(verbose)
    slug = _slug(source_name)
    source_log_path = _default_log_dir() / "sources" / f"{slug}.log"
    source_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"{ROOT_LOGGER}.source.{slug}"
    py_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(source_log_path)
        for handler in py_logger.handlers
    ):
        file_handler = logging.FileHandler(source_log_path, encoding="utf-8")
        app_logger = logging.getLogger(ROOT_LOGGER)
        if app_logger.handlers:
            file_handler.setFormatter(app_logger.handlers[0].formatter)
        file_handler.setLevel(logging.INFO)
        py_logger.addHandler(file_handler)

    return structlog.get_logger(logger_name).bind(source=source_name)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def log_path(source_name: str | None = None) -> Path:
    if source_name:
        return _default_log_dir() / "sources" / f"{_slug(source_name)}.log"
    return _default_log_dir() / "leadscrape.log"


def available_source_logs() -> Iterable[Path]:
    sources_dir = _default_log_dir() / "sources"
    if not sources_dir.exists():
        return []
    return sorted(p for p in sources_dir.glob("*.log"))


__all__ = [
    "configure_logging",
    "source_logger",
    "tail_log",
    "log_path",
    "available_source_logs",
]
