"""Logging for the ``spendcat`` package.

Modules log through ``get_logger("spendcat.<module>")`` and never attach
handlers. Until an entrypoint calls :func:`configure_logging` the package
logger only carries a ``NullHandler``, so embedding the library stays quiet.

Messages follow ``"<area>:<event> key=value ..."`` (``progress:bulk``,
``suggest:trace``), which keeps them greppable without a structured sink.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "spendcat"
LEVEL_ENV_VAR = "SPENDCAT_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

# The handler installed by ``configure_logging``; ``None`` until then.
_handler: logging.Handler | None = None


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or ``$SPENDCAT_LOG_LEVEL``) into a numeric level.

    Accepts ints, digit strings and level names in any case. Unrecognized
    values fall through to the environment, then to ``INFO``.
    """

    for candidate in (level, os.getenv(LEVEL_ENV_VAR)):
        if isinstance(candidate, int):
            return candidate
        if not candidate:
            continue
        text = candidate.strip().upper()
        if text.isdigit():
            return int(text)
        named = logging.getLevelNamesMapping().get(text)
        if named is not None:
            return named
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
    force: bool = False,
) -> logging.Handler:
    """Attach one ``StreamHandler`` to the package logger.

    Repeated calls are no-ops returning the existing handler unless ``force``
    is set, in which case the previous handler is replaced (the CLI does this
    so each invocation writes to the current ``sys.stderr``).
    """

    global _handler
    logger = logging.getLogger(PACKAGE_LOGGER)
    if _handler is not None:
        if not force:
            return _handler
        logger.removeHandler(_handler)

    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = resolve_level(level)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False

    _handler = handler
    return handler


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if _handler is None and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
