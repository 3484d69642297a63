import logging
import sys
from typing import Any

import structlog

# event fields that may carry the assertion, the installation token or key material
SECRET_FIELDS = frozenset({"assertion", "token", "private_key", "authorization"})


def redact_secrets(
    logger: "Any",
    method_name: "str",
    event_dict: "dict[str, Any]",
) -> "dict[str, Any]":
    """
    masks credential fields before anything is rendered.
    """
    for key in SECRET_FIELDS & event_dict.keys():
        event_dict[key] = "***"
    return event_dict


def setup_logging(level: "str") -> "None":
    """
    maps string log level to logging module levels and configures
    structlog with a console renderer on stderr, keeping stdout free
    for shell pipelines around scheduled runs.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
