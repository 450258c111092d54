"""
Structured logging for the listing pipeline.

structlog renders every entry either as JSON (production) or as coloured
console lines (development). Each pipeline run binds the raw message and chat
group it is working on, and a catchup run binds its trace id, so every entry
emitted while a message is in flight can be correlated without passing ids
through every call.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from .config import config

# Per-run correlation fields, in the order they appear in rendered entries
_CONTEXT: dict[str, ContextVar[str | None]] = {
    'trace_id': ContextVar('trace_id', default=None),
    'message_id': ContextVar('message_id', default=None),
    'group_id': ContextVar('group_id', default=None),
}


def get_trace_id() -> str | None:
    return _CONTEXT['trace_id'].get()


def get_message_id() -> str | None:
    """ID of the raw message currently being processed, if any."""
    return _CONTEXT['message_id'].get()


def get_group_id() -> str | None:
    return _CONTEXT['group_id'].get()


def bind_run_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Processor: copy the bound run ids into the entry unless it sets its own."""
    for key, var in _CONTEXT.items():
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def configure_logging(json_output: bool = False, log_level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        json_output: Render JSON lines instead of console output
        log_level: Level name; defaults to config.LOG_LEVEL
    """
    level = getattr(logging, (log_level or config.LOG_LEVEL).upper(), logging.INFO)

    # Route library loggers (uvicorn, sqlalchemy, httpx) to the same stream
    logging.basicConfig(format='%(message)s', stream=sys.stdout, level=level)

    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        bind_run_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt='iso', utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors.append(structlog.processors.format_exc_info)
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def logging_context(**ids: str | None) -> Iterator[None]:
    """
    Bind run ids (trace_id, message_id, group_id) for the enclosed block.

    Ids passed as None are left as they are, so a per-message block nested in
    a catchup run keeps the run's trace id. Previous values are restored on
    exit, including when the block raises.

    Usage:
        with logging_context(message_id=str(message.id), group_id=str(message.group_id)):
            logger.info('pipeline.started')
    """
    unknown = set(ids) - set(_CONTEXT)
    if unknown:
        raise TypeError(f'Unknown logging context fields: {sorted(unknown)}')

    tokens = [
        (_CONTEXT[key], _CONTEXT[key].set(value)) for key, value in ids.items() if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class PipelineTimer:
    """
    Wall-clock timings for the stages of one pipeline or catchup run.

    Stages are recorded in milliseconds, and a stage that raises is still
    recorded.
    """

    def __init__(self):
        self.started = time.perf_counter()
        self.stages: dict[str, float] = {}

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        began = time.perf_counter()
        try:
            yield
        finally:
            self.stages[name] = (time.perf_counter() - began) * 1000

    @property
    def total_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000

    def summary(self) -> dict[str, Any]:
        """Rounded timings for log entries: ``total_ms`` plus per-stage ``stages``."""
        return {
            'total_ms': round(self.total_ms, 2),
            'stages': {name: round(ms, 2) for name, ms in self.stages.items()},
        }


# Console output until the service entry point reconfigures for JSON
configure_logging(json_output=False)
