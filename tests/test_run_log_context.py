import asyncio
import logging

import pytest

from streamsender.core.run_log_context import CURRENT_RUN_ID, RunLogFilter


def _record(msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord("streamsender", logging.INFO, __file__, 1, msg, None, None)


def test_filter_without_run_context():
    record = _record()
    assert RunLogFilter().filter(record) is True
    assert record.run_id is None
    assert record.run_tag == ""


def test_filter_tags_records_inside_run_context():
    token = CURRENT_RUN_ID.set("abc")
    try:
        record = _record()
        RunLogFilter().filter(record)
    finally:
        CURRENT_RUN_ID.reset(token)

    assert record.run_id == "abc"
    assert record.run_tag == "[abc] "


@pytest.mark.asyncio
async def test_tasks_inherit_run_id_from_spawning_context():
    async def read_run_id():
        await asyncio.sleep(0)
        return CURRENT_RUN_ID.get()

    token = CURRENT_RUN_ID.set("run-1")
    try:
        task = asyncio.create_task(read_run_id())
    finally:
        CURRENT_RUN_ID.reset(token)

    assert CURRENT_RUN_ID.get() is None
    assert await task == "run-1"
