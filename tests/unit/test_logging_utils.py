"""Tests for utils/logging.py — configure_logging and its use by the manager."""
from __future__ import annotations

import asyncio
import io
import json
import logging
from collections.abc import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from conftest import wait_for
from kairos.controller.manager import ControllerManager
from kairos.controller.reconciler import ReconcileResult, Reconciler
from kairos.core.config import ControllerConfig
from kairos.store.memory import InMemoryStore
from kairos.utils.logging import configure_logging


def _ours() -> list[logging.Handler]:
    return [h for h in logging.getLogger().handlers if h.get_name() == "kairos"]


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    level = root.level
    yield
    for handler in _ours():
        root.removeHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.mark.parametrize(
    ("level", "expected"),
    [("DEBUG", logging.DEBUG), ("info", logging.INFO), ("WARNING", logging.WARNING)],
)
def test_sets_root_level(level: str, expected: int) -> None:
    configure_logging(level, json=False)
    assert logging.getLogger().level == expected


def test_unknown_level_falls_back_to_info() -> None:
    configure_logging("LOUD")
    assert logging.getLogger().level == logging.INFO


def test_reconfiguring_replaces_only_its_own_handler() -> None:
    foreign = logging.NullHandler()
    logging.getLogger().addHandler(foreign)
    try:
        configure_logging("INFO")
        configure_logging("DEBUG", json=False)
        assert len(_ours()) == 1
        assert foreign in logging.getLogger().handlers
    finally:
        logging.getLogger().removeHandler(foreign)


def test_http_client_loggers_are_quietened() -> None:
    configure_logging("DEBUG")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING


def test_json_lines() -> None:
    out = io.StringIO()
    configure_logging("INFO", json=True, stream=out)
    structlog.get_logger("kairos.test").info("build_finished", build="ci/web", phase="Succeeded")
    record = json.loads(out.getvalue().strip().splitlines()[-1])
    assert record["event"] == "build_finished"
    assert record["build"] == "ci/web"
    assert record["level"] == "info"
    assert record["logger"] == "kairos.test"
    assert record["timestamp"].endswith("Z")


def test_stdlib_records_share_the_format() -> None:
    out = io.StringIO()
    configure_logging("INFO", json=True, stream=out)
    logging.getLogger("somelib").warning("disk low")
    record = json.loads(out.getvalue().strip().splitlines()[-1])
    assert record["event"] == "disk low"
    assert record["level"] == "warning"


def test_level_filters_structlog_events() -> None:
    out = io.StringIO()
    configure_logging("WARNING", json=True, stream=out)
    structlog.get_logger("kairos.test").info("job_in_progress")
    assert out.getvalue() == ""


async def test_manager_run_applies_configured_logging() -> None:
    reconciler = MagicMock(spec=Reconciler)
    reconciler.reconcile = AsyncMock(return_value=ReconcileResult())
    config = ControllerConfig(log_level="WARNING", log_json=False)
    manager = ControllerManager(InMemoryStore(), reconciler, config)

    task = asyncio.create_task(manager.run())

    async def started() -> bool:
        return manager.running

    await wait_for(started)
    assert logging.getLogger().level == logging.WARNING
    assert len(_ours()) == 1
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert manager.running is False
