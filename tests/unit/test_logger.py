import asyncio

import pytest
import structlog

from gift_finder.utils.logger import LogContext, get_logger, setup_logging


def test_setup_logging():
    # Calling it shouldn't crash
    setup_logging(level="DEBUG", json_format=False)
    setup_logging(level="INFO", json_format=True)


def test_get_logger():
    logger = get_logger("test_module")
    assert logger is not None
    logger.info("test message", key="value")


def test_log_context_binds_and_resets():
    with LogContext(session_index=1, query="spice rack"):
        bound = structlog.contextvars.get_contextvars()
        assert bound["session_index"] == 1
        assert bound["query"] == "spice rack"
    assert "session_index" not in structlog.contextvars.get_contextvars()


def test_log_context_restores_outer_binding():
    with LogContext(run_id="outer"):
        with LogContext(run_id="inner"):
            assert structlog.contextvars.get_contextvars()["run_id"] == "inner"
        assert structlog.contextvars.get_contextvars()["run_id"] == "outer"


@pytest.mark.asyncio
async def test_log_context_is_task_local():
    seen = {}

    async def worker(index):
        with LogContext(session_index=index):
            await asyncio.sleep(0)
            seen[index] = structlog.contextvars.get_contextvars()["session_index"]

    await asyncio.gather(worker(1), worker(2), worker(3))
    assert seen == {1: 1, 2: 2, 3: 3}
