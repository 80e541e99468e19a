"""
API routes for starting and stopping stream runs.
"""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from streamsender.api.error_handling import http_exception
from streamsender.core.engine import get_default_engine
from streamsender.models import RunConfig

router = APIRouter()


class StreamStartResponse(BaseModel):
    success: bool
    base_manifest_id: str


class StreamStopResponse(BaseModel):
    success: bool
    state: str


@router.post("/start", response_model=StreamStartResponse)
async def start_stream(config: RunConfig) -> StreamStartResponse:
    """
    Start a run with the given config, independently of the schedule.
    """
    try:
        manifest_id = await get_default_engine().dispatch_run(config)
        return StreamStartResponse(success=True, base_manifest_id=manifest_id)
    except Exception as e:
        raise http_exception("start streams", e)


@router.post("/stop", response_model=StreamStopResponse)
async def stop_stream() -> StreamStopResponse:
    """
    Stop the schedule and all streams on stream-tester.

    Runs already being polled keep being tracked until they finish.
    """
    engine = get_default_engine()
    try:
        await engine.stop_schedule()
        return StreamStopResponse(success=True, state=engine.state.value)
    except Exception as e:
        raise http_exception("stop streams", e)
