import logging
import re
import sys
from typing import Any

import structlog

# provider key shapes: OpenAI/Anthropic "sk-..." and Google "AIza..."
_SECRET_PATTERN = re.compile(r"\b(sk-[A-Za-z0-9_\-]{8,}|AIza[0-9A-Za-z_\-]{20,})")


def _mask(match: "re.Match[str]") -> "str":
    return match.group(0)[:7] + "***"


def redact_secrets(
    logger: "Any",
    method_name: "str",
    event_dict: "dict[str, Any]",
) -> "dict[str, Any]":
    """
    masks anything that looks like a provider API key in string
    values, e.g. in error bodies echoed back by a provider.
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _SECRET_PATTERN.sub(_mask, value)
    return event_dict


def setup_logging(level: "str") -> "None":
    """
    maps string log level to logging module levels and configures
    structlog with a console renderer on stderr, so stdout stays
    free for command output.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=sys.stderr,
    )
    # httpx logs every request URL at info level
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
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
