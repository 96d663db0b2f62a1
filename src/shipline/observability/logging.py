"""Structured logging for pipeline runs.

Events go to stderr through rich and, with ``--log``, to
``{project}/logs/debug.jsonl``. While a run is in progress every event
carries the run's branch, build number, environment and tag, and events
raised inside a stage also carry the stage name.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from collections.abc import Iterator

    from structlog.typing import EventDict, Processor, WrappedLogger

    from shipline.pipeline.context import PipelineContext

LOG_FILE_NAME = "debug.jsonl"

# Dependencies whose DEBUG output drowns out pipeline events
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")

# Keys RichHandler already renders on its own
_CONSOLE_DROPPED = ("level", "timestamp")

_configured = False
_file_handler: logging.FileHandler | None = None
_logs_dir: Path | None = None


@contextmanager
def run_log_context(context: PipelineContext) -> Iterator[None]:
    """Tag every event logged inside the block with the run's identity."""
    with structlog.contextvars.bound_contextvars(
        branch=context.branch,
        build_number=context.build_number,
        environment=str(context.target_environment),
        tag=context.image_tag,
    ):
        yield


@contextmanager
def stage_log_context(stage: str) -> Iterator[None]:
    """Tag every event logged inside the block with the running stage."""
    with structlog.contextvars.bound_contextvars(stage=stage):
        yield


def _drop_console_duplicates(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    for key in _CONSOLE_DROPPED:
        event_dict.pop(key, None)
    return event_dict


def _jsonl_entry(record: logging.LogRecord) -> dict[str, Any]:
    """Flatten a record into one JSON object; structlog fields sit at top level."""
    entry: dict[str, Any] = {
        "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
        "level": record.levelname.lower(),
        "logger": record.name,
    }
    exc_info: Any = record.exc_info
    if isinstance(record.msg, dict):
        fields = {k: v for k, v in record.msg.items() if k not in ("level", "timestamp")}
        entry["event"] = fields.pop("event", "")
        exc_info = fields.pop("exc_info", None) or exc_info
        entry.update(fields)
    else:
        # Plain stdlib loggers from dependencies
        entry["event"] = record.getMessage()

    # Emitted synchronously, so exc_info=True still sees the active exception
    if exc_info is True:
        exc_info = sys.exc_info()
    elif isinstance(exc_info, BaseException):
        exc_info = (type(exc_info), exc_info, exc_info.__traceback__)
    if exc_info and exc_info[0] is not None:
        entry["exception"] = logging.Formatter().formatException(exc_info)
    return entry


class JSONLFileHandler(logging.FileHandler):
    """File handler writing one JSON object per event."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(_jsonl_entry(record), default=str)
            if self.stream:
                self.stream.write(line + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


def _console_handler(verbosity: int) -> RichHandler:
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
        level={0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG),
    )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _drop_console_duplicates,
                structlog.dev.ConsoleRenderer(colors=False),
            ],
        )
    )
    return handler


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    project_path: Path | None = None,
) -> None:
    """Configure console and optional file logging.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG on the console.
        log_to_file: If True, also write every event to
            ``{project_path}/logs/debug.jsonl``.
        project_path: Project directory. Required if log_to_file=True.

    Raises:
        ValueError: If log_to_file=True but project_path is not provided.
    """
    global _configured, _file_handler, _logs_dir

    if log_to_file and project_path is None:
        raise ValueError("project_path is required when log_to_file=True")

    close_file_logging()
    _logs_dir = None

    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    if log_to_file and project_path is not None:
        _logs_dir = project_path / "logs"
        _logs_dir.mkdir(parents=True, exist_ok=True)
        _file_handler = JSONLFileHandler(str(_logs_dir / LOG_FILE_NAME), mode="a")
        _file_handler.setLevel(logging.DEBUG)
        handlers.append(_file_handler)

    # The file wants everything; the console handler filters for itself
    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, handlers=handlers, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        # Module loggers are created at import and must follow later reconfiguration
        cache_logger_on_first_use=False,
    )
    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Get a structured logger, configuring console logging on first use.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Bound logger instance.
    """
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def get_logs_dir() -> Path | None:
    """The directory holding debug.jsonl, or None if file logging is off."""
    return _logs_dir


def close_file_logging() -> None:
    """Flush and close the JSONL file, if one is open."""
    global _file_handler
    if _file_handler is not None:
        logging.getLogger().removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
