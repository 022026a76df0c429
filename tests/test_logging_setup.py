import io
import logging

import pytest

from spendcat.logging_setup import configure_logging, get_logger, resolve_level


@pytest.mark.parametrize(
    "level,env,expected",
    [
        (logging.WARNING, "DEBUG", logging.WARNING),
        ("debug", None, logging.DEBUG),
        ("15", None, 15),
        ("nonsense", "error", logging.ERROR),
        (None, None, logging.INFO),
    ],
)
def test_resolve_level(
    monkeypatch: pytest.MonkeyPatch, level: int | str | None, env: str | None, expected: int
):
    if env is not None:
        monkeypatch.setenv("SPENDCAT_LOG_LEVEL", env)
    assert resolve_level(level) == expected


def test_configure_once_then_force_replaces_handler():
    first, second = io.StringIO(), io.StringIO()
    handler = configure_logging("INFO", stream=first, fmt="%(name)s %(message)s")
    assert configure_logging("DEBUG", stream=second) is handler

    get_logger("spendcat.test").info("progress:bulk file=%r", "jan.csv")
    assert first.getvalue() == "spendcat.test progress:bulk file='jan.csv'\n"

    replaced = configure_logging("DEBUG", stream=second, fmt="%(message)s", force=True)
    assert replaced is not handler
    get_logger("spendcat.test").debug("suggest:retry attempt=1")
    assert second.getvalue() == "suggest:retry attempt=1\n"
    assert handler not in logging.getLogger("spendcat").handlers
