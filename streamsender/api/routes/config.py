"""
API routes for the run config used by scheduled runs.
"""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from streamsender.core.engine import get_default_engine
from streamsender.models import RunConfig

router = APIRouter()


@router.get("", response_model=RunConfig)
async def get_config() -> RunConfig:
    return get_default_engine().get_config()


@router.post("/update", status_code=status.HTTP_204_NO_CONTENT)
async def update_config(config: RunConfig) -> Response:
    """
    Replace the config for future scheduled runs; running ones are unaffected.
    """
    get_default_engine().set_config(config.model_copy(update={"do_not_clear_stats": False}))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
