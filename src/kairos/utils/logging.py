"""structlog setup for the controller process."""
from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

# Libraries that log each HTTP exchange at INFO; callbacks are logged by the dispatcher.
_CHATTY_LOGGERS = ("httpx", "httpcore")

_HANDLER_NAME = "kairos"


def _pre_chain(json: bool) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json:
        # Structured tracebacks; the console renderer formats exceptions itself.
        processors.append(structlog.processors.dict_tracebacks)
    return processors


def configure_logging(
    level: str = "INFO",
    json: bool = True,
    *,
    stream: TextIO | None = None,
) -> None:
    """Route structlog and stdlib logging through one handler.

    Every reconcile step is logged as a snake_case event with ``build=ns/name``
    context. ``json=True`` renders one JSON object per line for log
    collectors; ``json=False`` renders coloured console lines for local runs.
    Calling it again replaces the handler installed by the previous call and
    leaves handlers installed by anyone else alone.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    pre_chain = _pre_chain(json)
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
