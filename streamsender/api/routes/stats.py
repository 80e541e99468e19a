"""
API routes for reading stored run statistics.
"""

from __future__ import annotations

from fastapi import APIRouter, Query

from streamsender.api.error_handling import http_exception
from streamsender.core.engine import get_default_engine
from streamsender.models import Stats

router = APIRouter()


@router.get("/all", response_model=dict[str, Stats])
async def all_stats() -> dict[str, Stats]:
    """
    Stats of every stored run, newest first.
    """
    try:
        return await get_default_engine().store.all()
    except Exception as e:
        raise http_exception("list stats", e)


@router.get("/select", response_model=Stats)
async def select_stats(
    base_manifest_id: str = Query(..., min_length=1),
) -> Stats:
    """
    Stats of a single run.
    """
    try:
        return await get_default_engine().store.select(base_manifest_id)
    except Exception as e:
        raise http_exception("select stats", e)
