"""Pytest configuration for test isolation.

The service persists progress and the category list under a data directory
(default ``./.spendcat``). To keep tests hermetic, an autouse fixture points
``SPENDCAT_DATA_DIR`` at the test's own temporary directory and clears the
inference settings that a developer's shell or ``.env`` might carry.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from spendcat import logging_setup

SAMPLE_CSV = (
    "Date,Amount,Description\n"
    "2024-01-05,-42.10,Grocery Store\n"
    "2024-01-06,-3.50,Coffee Shop\n"
    "01/07/2024,-60.00,Gas Station\n"
    "08-Jan-2024,2500.00,Payroll Deposit\n"
    "2024-01-09,-15.99,Streaming Service\n"
)


@pytest.fixture(autouse=True)
def _isolate_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_root = tmp_path / "data"
    data_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("SPENDCAT_DATA_DIR", os.fspath(data_root))
    for name in (
        "SPENDCAT_BASE_URL",
        "SPENDCAT_MODEL",
        "SPENDCAT_TIMEOUT_SEC",
        "SPENDCAT_BATCH_SIZE",
        "SPENDCAT_HISTORY_LIMIT",
        "SPENDCAT_CONCURRENCY",
        "SPENDCAT_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    return data_root


@pytest.fixture
def sample_csv() -> str:
    return SAMPLE_CSV


@pytest.fixture(autouse=True)
def _detach_log_handler():
    # CLI runs bind the handler to a captured stream that closes afterwards.
    yield
    if logging_setup._handler is not None:
        logging.getLogger(logging_setup.PACKAGE_LOGGER).removeHandler(logging_setup._handler)
        logging_setup._handler = None
