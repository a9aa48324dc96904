"""
Logging for the proposal generation pipeline.

Console output is colored and short; file output is one JSON object per
line with the pipeline context (request, user, session, batch) attached.
Job post text, proposal text and API keys must never reach a log record:
callers log lengths, ids and amounts, and the JSON formatter redacts the
known sensitive field names as a backstop.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Set

from ..config import get_config

ROOT_LOGGER_NAME = "proposal_forge"

REDACTED_FIELDS = {"job_post_text", "proposal_text", "new_text", "prompt", "api_key", "openrouter_api_key"}

# Context keys shown inline on the console, shortened
CONSOLE_CONTEXT_KEYS = ("request_id", "session_id", "batch_id")

# (file name, level, max bytes, backups); None level means the configured level
FILE_HANDLERS = (
    ("app.log", None, 10 * 1024 * 1024, 5),
    ("errors.log", logging.ERROR, 5 * 1024 * 1024, 3),
)


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter carrying the record's pipeline fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "component": record.name.rsplit(".", 1)[-1],
            "message": record.getMessage(),
        }
        for key, value in getattr(record, "pipeline_fields", {}).items():
            entry[key] = "[redacted]" if key in REDACTED_FIELDS else value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """Colored single-line console output with short context ids."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        fields = getattr(record, "pipeline_fields", {})
        ids = " ".join(
            f"{key.split('_')[0]}={str(fields[key])[:8]}"
            for key in CONSOLE_CONTEXT_KEYS if key in fields
        )
        color = self.COLORS.get(record.levelname, "")
        line = (f"{color}{time.strftime('%H:%M:%S', time.localtime(record.created))} "
                f"{record.levelname[0]} {record.name.rsplit('.', 1)[-1]:<9}")
        if ids:
            line += f" [{ids}]"
        line += f" {record.getMessage()}{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class PipelineLogger:
    """
    Component logger with sticky pipeline context.

    Keyword arguments to the level methods become structured fields on the
    record, merged over the sticky context.
    """

    def __init__(self, component: str):
        self.logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
        self.context: Dict[str, Any] = {}

    def set_context(self, **fields) -> None:
        self.context.update(fields)

    def _emit(self, level: int, message: str, fields: Dict[str, Any]) -> None:
        if not self.logger.isEnabledFor(level):
            return
        exc_info = fields.pop("exc_info", False)
        self.logger.log(level, message, exc_info=exc_info,
                        extra={"pipeline_fields": {**self.context, **fields}})

    def debug(self, message: str, **fields) -> None:
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, **fields) -> None:
        self._emit(logging.INFO, message, fields)

    def warning(self, message: str, **fields) -> None:
        self._emit(logging.WARNING, message, fields)

    def error(self, message: str, **fields) -> None:
        self._emit(logging.ERROR, message, fields)

    def generation_started(self, request_id: str, user_id: str, session_id: str) -> None:
        self.set_context(request_id=request_id, user_id=user_id, session_id=session_id)
        self.info("Proposal generation started")

    def generation_finished(self, status: str, **fields) -> None:
        """Log the outcome and drop the generation's ids from the context."""
        level = logging.INFO if status == "completed" else logging.WARNING
        self._emit(level, f"Proposal generation {status}", dict(fields, status=status))
        for key in ("request_id", "user_id", "session_id"):
            self.context.pop(key, None)

    def batch_started(self, batch_id: str, job_count: int) -> None:
        self.set_context(batch_id=batch_id)
        self.info(f"Batch of {job_count} job posts started", job_count=job_count)

    def batch_completed(self, batch_id: str, generated: int, failed: int) -> None:
        self.info(f"Batch finished: {generated} generated, {failed} failed",
                  generated=generated, failed=failed)
        self.context.pop("batch_id", None)


class ProgressLogger:
    """Logs quarter milestones of a long operation, each one once."""

    STEP = 25

    def __init__(self, logger: PipelineLogger, total: int, operation: str):
        self.logger = logger
        self.total = total
        self.operation = operation
        self.done = 0
        self._started = time.monotonic()
        self._reported: Set[int] = set()

    def _percent(self) -> int:
        if not self.total:
            return 100
        return min(100, int(self.done * 100 / self.total))

    def update(self, increment: int = 1, message: Optional[str] = None) -> None:
        self.done += increment
        milestone = self._percent() // self.STEP * self.STEP
        if milestone and milestone not in self._reported:
            self._reported.add(milestone)
            text = f"{self.operation}: {milestone}% ({self.done}/{self.total})"
            self.logger.info(f"{text} - {message}" if message else text,
                             progress_percentage=milestone, items_processed=self.done,
                             total_items=self.total)

    def complete(self, message: Optional[str] = None) -> None:
        elapsed = round(time.monotonic() - self._started, 3)
        text = f"{self.operation} done in {elapsed}s"
        self.logger.info(f"{text} - {message}" if message else text,
                         items_processed=self.done, total_items=self.total, elapsed_seconds=elapsed)


def setup_logging(config: Optional[Any] = None) -> None:
    """(Re)configure the package logger from the app config."""
    if config is None:
        config = get_config()
    level = getattr(logging, str(config.log_level).upper(), logging.INFO)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(max(level, logging.INFO))
    console.setFormatter(ColoredConsoleFormatter())
    root.addHandler(console)

    if config.log_to_file:
        log_dir = Path(config.data_dir) / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        for filename, handler_level, max_bytes, backups in FILE_HANDLERS:
            handler = logging.handlers.RotatingFileHandler(
                log_dir / filename, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
            )
            handler.setLevel(handler_level or level)
            handler.setFormatter(StructuredFormatter())
            root.addHandler(handler)

    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def get_logger(component: str) -> PipelineLogger:
    return PipelineLogger(component)


def get_progress_logger(logger: PipelineLogger, total: int, operation: str) -> ProgressLogger:
    return ProgressLogger(logger, total, operation)


def get_gateway_logger() -> PipelineLogger:
    """Provider gateway and cost ledger."""
    return get_logger("gateway")


def get_analyzer_logger() -> PipelineLogger:
    return get_logger("analyzer")


def get_voice_logger() -> PipelineLogger:
    """Voice profiles and edit learning."""
    return get_logger("voice")


def get_workflow_logger() -> PipelineLogger:
    return get_logger("workflow")


# Configure on import; a broken log directory must not stop the pipeline
try:
    setup_logging()
except OSError as e:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    logging.getLogger(ROOT_LOGGER_NAME).warning(f"File logging unavailable: {e}")
