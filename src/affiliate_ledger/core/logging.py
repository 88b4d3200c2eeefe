from __future__ import annotations

import logging
import logging.config
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock
from typing import Any

import structlog
import structlog.contextvars
import structlog.stdlib

from affiliate_ledger.core.config import Settings
from affiliate_ledger.core.constants import SERVICE_NAME

_LOGGING_INITIALISED = False
_LOGGING_LOCK = Lock()


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    if isinstance(resolved, str):
        return logging.INFO
    return int(resolved)


def configure_logging(settings: Settings) -> None:
    """Configure structlog + stdlib logging exactly once per process."""

    global _LOGGING_INITIALISED
    if _LOGGING_INITIALISED:
        return

    with _LOGGING_LOCK:
        if _LOGGING_INITIALISED:
            return

        level = _resolve_level(settings.log_level)
        timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.add_log_level,
                timestamper,
                structlog.processors.dict_tracebacks,
                structlog.processors.JSONRenderer(),
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "structlog": {
                        "()": structlog.stdlib.ProcessorFormatter,
                        "processors": [
                            structlog.contextvars.merge_contextvars,
                            structlog.processors.add_log_level,
                            timestamper,
                            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                            structlog.processors.JSONRenderer(),
                        ],
                    }
                },
                "handlers": {
                    "default": {
                        "class": "logging.StreamHandler",
                        "formatter": "structlog",
                        "level": level,
                    }
                },
                "loggers": {
                    "": {
                        "handlers": ["default"],
                        "level": level,
                        "propagate": True,
                    },
                    # SQL echo is controlled by DatabaseSettings.echo only.
                    "sqlalchemy.engine": {
                        "handlers": ["default"],
                        "level": logging.WARNING,
                        "propagate": False,
                    },
                    # The sweep logs its own outcome; skip per-tick chatter.
                    "schedule": {
                        "handlers": ["default"],
                        "level": logging.WARNING,
                        "propagate": False,
                    },
                },
            }
        )

        structlog.contextvars.bind_contextvars(service=SERVICE_NAME)
        _LOGGING_INITIALISED = True


@contextmanager
def job_context(job: str, **kwargs: Any) -> Iterator[str]:
    """Tag every event logged inside the block with ``job`` and a fresh ``run_id``.

    Bindings made before the block are restored on exit.
    """
    run_id = uuid.uuid4().hex
    with structlog.contextvars.bound_contextvars(job=job, run_id=run_id, **kwargs):
        yield run_id
