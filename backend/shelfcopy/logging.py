"""structlog configuration shared by the API process and the Temporal worker.

Every event is tagged with the emitting process (``api`` or ``worker``).
With BATCH_LOG_FILE set, events bound to a batch (``batch_id`` in context)
are also appended to that file as JSON lines, giving one grep-able trail per
batch across both processes.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import IO, Any

import structlog

from shelfcopy.config import settings

_LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class BatchEventSink:
    """structlog processor appending batch-scoped events to a JSON-lines file.

    Passes every event through unchanged. If the file cannot be opened or a
    write fails, the sink disables itself and stdout logging carries on.
    """

    def __init__(self, file_path: str) -> None:
        self.file_path = file_path
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            # structlog is not configured yet
            print(
                f"WARNING: Could not open batch log {file_path!r}: {exc}. "
                "Batch events go to stdout only.",
                file=sys.stderr,
            )

    @property
    def enabled(self) -> bool:
        return self._file is not None

    def __call__(
        self, logger: Any, method_name: str, event_dict: structlog.types.EventDict
    ) -> structlog.types.EventDict:
        if self._file is None or "batch_id" not in event_dict:
            return event_dict
        try:
            self._file.write(json.dumps(event_dict, default=str) + "\n")
            self._file.flush()
        except (OSError, ValueError):
            self._file = None
            print(
                f"WARNING: Write to batch log {self.file_path!r} failed. Batch log disabled.",
                file=sys.stderr,
            )
        return event_dict

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


def tag_process(process: str) -> structlog.types.Processor:
    def processor(
        logger: Any, method_name: str, event_dict: structlog.types.EventDict
    ) -> structlog.types.EventDict:
        event_dict.setdefault("process", process)
        return event_dict

    return processor


def configure_logging(process: str = "api") -> BatchEventSink | None:
    """Console renderer in development, JSON everywhere else.

    Returns the batch sink when BATCH_LOG_FILE is set.
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.environment == "development"
        else structlog.processors.JSONRenderer()
    )

    level = _LOG_LEVEL_MAP.get(settings.log_level.upper(), logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        tag_process(process),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    sink = BatchEventSink(settings.batch_log_file) if settings.batch_log_file else None
    if sink is not None:
        processors.append(sink)
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return sink
