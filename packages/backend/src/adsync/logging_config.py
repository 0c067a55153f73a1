"""structlog setup shared by the API process and the CLI.

Learn: structlog loggers are created with structlog.get_logger() at module
import time; configure_logging() only swaps the processor chain, so it can
run after imports (in the app factory) without re-creating loggers.
Bound context variables (request_id, connection_id) show up on every line
logged from the same task.
"""

import logging
import sys

import structlog


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Install the structlog processor chain and align stdlib logging.

    aio-pika and uvicorn log through the stdlib, so the root logger gets the
    same level and a plain stream handler.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    # aiormq is chatty at INFO about every frame/heartbeat
    logging.getLogger("aiormq").setLevel(max(log_level, logging.WARNING))
