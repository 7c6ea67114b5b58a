"""Structured logging for the knowledge engine (structlog).

Every module logs through ``get_logger(__name__)`` with snake_case event
names and key/value context:

    from knowledge.observability.logging import get_logger

    logger = get_logger(__name__)
    logger.info("ingestion_started", source_id="doc-1", chunk_count=12)

Console output goes to stderr so command output on stdout stays clean. With
``enable_file`` the events are also routed through the stdlib root logger
into ``<log_dir>/knowledge.log``, rotated at midnight.
"""

import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from knowledge.config.schema import LoggingConfig

LOG_FILE_NAME = "knowledge.log"


class RetainingFileHandler(logging.handlers.TimedRotatingFileHandler):
    """Midnight rotation that also deletes rotated files older than max_days."""

    def __init__(self, filename: str, max_days: int = 30, **kwargs):
        super().__init__(filename, when="midnight", interval=1, **kwargs)
        self.max_days = max_days

    def doRollover(self) -> None:
        super().doRollover()
        self.prune()

    def prune(self) -> int:
        """Delete expired rotated files; returns how many were removed."""
        current = Path(self.baseFilename)
        cutoff = time.time() - self.max_days * 86400
        removed = 0
        for rotated in current.parent.glob(current.name + ".*"):
            try:
                if rotated.stat().st_mtime < cutoff:
                    rotated.unlink()
                    removed += 1
            except OSError as e:
                logging.getLogger(__name__).warning("Could not prune log file %s: %s", rotated, e)
        return removed


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag every event with the application name."""
    event_dict.setdefault("app", "knowledge")
    return event_dict


def _processors(json_logs: bool) -> list[Processor]:
    renderer: Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    return [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]


def _attach_file_handler(log_dir: Path, log_level: int, max_days: int) -> bool:
    """Route stdlib logging into a rotating file. False if the directory is unusable."""
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RetainingFileHandler(str(log_dir / LOG_FILE_NAME), max_days=max_days, encoding="utf-8")
    except OSError as e:
        logging.warning("File logging disabled, cannot write to %s: %s", log_dir, e)
        return False

    handler.setLevel(log_level)
    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, logging.FileHandler)]:
        root.removeHandler(existing)
        existing.close()
    root.addHandler(handler)
    root.setLevel(log_level)
    return True


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_dir: Optional[Path] = None,
    max_days: int = 30,
    enable_file: bool = True,
) -> None:
    """Configure structlog (and the stdlib root logger) for the process.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: Render JSON lines instead of the console format
        log_dir: Directory for knowledge.log; None disables file output
        max_days: Days to keep rotated log files
        enable_file: Write to log_dir as well as stderr
    """
    log_level = getattr(logging, level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=log_level)

    to_file = bool(enable_file and log_dir) and _attach_file_handler(log_dir, log_level, max_days)
    logger_factory = (
        structlog.stdlib.LoggerFactory() if to_file else structlog.PrintLoggerFactory(file=sys.stderr)
    )
    structlog.configure(
        processors=_processors(json_logs),
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )


def configure_from_config(config: LoggingConfig) -> None:
    """Configure logging from the ``logging`` config section."""
    configure_logging(
        level=config.level.value,
        json_logs=config.json_logs,
        log_dir=config.log_dir if config.enable_file else None,
        max_days=config.max_days,
        enable_file=config.enable_file,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a structlog logger for a module (pass ``__name__``)."""
    return structlog.get_logger(name)
