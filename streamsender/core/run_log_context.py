"""
Per-run log tagging.

The run being polled is identified via the CURRENT_RUN_ID contextvar, which is
copied into every asyncio task spawned while it is set. RunLogFilter stamps it
onto log records so concurrent poll tasks can be told apart in the console.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Optional

CURRENT_RUN_ID: ContextVar[Optional[str]] = ContextVar("CURRENT_RUN_ID", default=None)


class RunLogFilter(logging.Filter):
    """
    Adds ``run_id`` and ``run_tag`` attributes to every record.

    ``run_tag`` is ``"[<run id>] "`` inside a run context and empty otherwise,
    so it can be placed directly in a format string.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        run_id = getattr(record, "run_id", None)
        if run_id is None:
            run_id = CURRENT_RUN_ID.get()
        record.run_id = run_id
        record.run_tag = f"[{run_id}] " if run_id else ""
        return True
