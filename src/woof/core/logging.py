"""structlog setup for Woof.

Two output modes: JSON lines for the long-running processes (`serve`,
`listen`) and the colored console renderer for interactive commands.

While a message is being ingested its id is bound with message_context(),
so every event emitted on its behalf (propagation, classification, store
writes) carries a `message_id` field and the audit trail of one message can
be grepped out of the log:

    with message_context(envelope.id):
        logger.info("message_classified", kind="bug")
    # {"event": "message_classified", "kind": "bug", "message_id": "id1", ...}
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

MESSAGE_ID_KEY = "message_id"


@contextmanager
def message_context(message_id: str | None) -> Iterator[None]:
    """Bind message_id to every log event emitted inside the block.

    An empty or missing id binds nothing; the previous binding (if any) is
    restored on exit.
    """
    if not message_id:
        yield
        return
    with structlog.contextvars.bound_contextvars(**{MESSAGE_ID_KEY: message_id}):
        yield


def current_message_id() -> str | None:
    """Id bound by the innermost message_context(), if any."""
    return structlog.contextvars.get_contextvars().get(MESSAGE_ID_KEY)


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Route structlog through stdlib logging on stdout.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines if True, colored console output otherwise
    """
    level = logging.getLevelName(log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger("woof").setLevel(level)
    # APScheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(max(level, logging.WARNING))

    renderers: list[structlog.types.Processor]
    if json_output:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        # ConsoleRenderer formats exc_info itself
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *renderers,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
