"""Structured logging setup.

Samplers log through ``structlog.get_logger()``. Until ``configure()`` is
called, structlog's defaults apply (plain console output).
"""

from __future__ import annotations

import logging
import sys

import structlog


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(level: str = "info", json: bool = False, source: str = "hoststat") -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Minimum level name (debug, info, warning, error).
        json: Render JSON lines instead of the human-readable console format.
        source: Value of the ``source`` field added to every event.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level!r}")

    renderer: structlog.types.Processor
    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=[
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source(source),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
        structlog.processors.add_log_level,
        _add_source(source),
        structlog.processors.StackInfoRenderer(),
    ]
    # ConsoleRenderer formats exceptions itself
    if json:
        processors.append(structlog.processors.format_exc_info)
    processors.append(structlog.stdlib.ProcessorFormatter.wrap_for_formatter)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
