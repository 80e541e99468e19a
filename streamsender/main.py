"""
Stream Sender - Main Application Entry Point

FastAPI control plane around the run orchestration engine: streams are blasted
into the broadcaster on a schedule, and the resulting stats are stored and
served to the dashboard.
"""

from contextlib import asynccontextmanager
from typing import Any, cast

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from streamsender import __version__
from streamsender.config import default_run_config, settings
from streamsender.core.engine import Engine, get_default_engine, set_default_engine
from streamsender.core.harness_client import create_default_client
from streamsender.core.results_store import create_results_store
from streamsender.core.run_log_context import RunLogFilter

# Configure logging
# Use uvicorn's colored "LEVEL:" format for ALL loggers so app and server
# output look the same.
from uvicorn.logging import DefaultFormatter

console_handler = logging.StreamHandler()
console_handler.setFormatter(
    DefaultFormatter(fmt="%(levelprefix)s %(asctime)s - %(run_tag)s%(message)s", use_colors=True)
)
console_handler.addFilter(RunLogFilter())

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    handlers=[console_handler],
)

logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def _start_schedule_after_delay(engine: Engine, delay_seconds: float) -> None:
    if delay_seconds > 0:
        logger.info("⏳ Sleeping for %.0f seconds before sending streams", delay_seconds)
        await asyncio.sleep(delay_seconds)
    await engine.run_schedule(settings.STREAM_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager - handles startup and shutdown events.
    """
    logger.info("🚀 Stream sender starting up...")

    store = await create_results_store()
    harness = create_default_client()
    config = default_run_config()
    engine = Engine(
        config=config,
        harness=harness,
        store=store,
        poll_interval_seconds=settings.POLL_INTERVAL_SECONDS,
        poll_max_attempts=settings.POLL_MAX_ATTEMPTS,
    )
    set_default_engine(engine)

    schedule_starter: asyncio.Task | None = None
    if settings.SCHEDULE_ENABLED:
        logger.info(
            "📡 Blasting new streams every %.0fs to broadcaster at %s via %s",
            settings.STREAM_INTERVAL_SECONDS,
            config.host,
            harness.base_url,
        )
        logger.info(
            "📡 Sending %d copies of %s repeated %d times",
            config.simultaneous,
            config.file_name,
            config.repeat,
        )
        schedule_starter = asyncio.create_task(
            _start_schedule_after_delay(engine, settings.SCHEDULE_START_DELAY_SECONDS),
            name="schedule-starter",
        )
    else:
        logger.info("Schedule disabled; runs start only via /stream/start")

    yield

    # Shutdown
    logger.info("🛑 Stopping stream sender...")
    if schedule_starter is not None and not schedule_starter.done():
        schedule_starter.cancel()
        await asyncio.gather(schedule_starter, return_exceptions=True)

    try:
        await engine.stop_schedule()
    except Exception as e:
        logger.error("Unable to stop streams on shutdown: %s", e)

    await engine.shutdown(
        cancel_polls=settings.CANCEL_POLLS_ON_SHUTDOWN,
        timeout_seconds=settings.SHUTDOWN_TIMEOUT_SECONDS,
    )
    await harness.close()
    try:
        await store.close()
    except Exception as e:
        logger.error(f"Error closing results store: {e}")
    set_default_engine(None)
    logger.info("✅ Stream sender stopped")


# Initialize FastAPI application
app = FastAPI(
    title="Stream Sender",
    description="Recurring stream-ingest load tests with stored results",
    version=__version__,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# The dashboard calls the API cross-origin, including preflight requests.
app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["POST", "GET", "OPTIONS", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns:
        dict: Engine state and store backend
    """
    health_status: dict[str, Any] = {
        "status": "healthy",
        "service": "streamsender",
        "version": __version__,
        "checks": {},
    }

    try:
        engine = get_default_engine()
        health_status["checks"]["engine"] = {
            "state": engine.state.value,
            "in_flight_runs": len(engine.in_flight_runs()),
        }
    except RuntimeError as e:
        health_status["checks"]["engine"] = {"status": "not_initialized", "error": str(e)}
        health_status["status"] = "degraded"
        return health_status

    if settings.RESULTS_BACKEND == "postgres":
        try:
            from streamsender.connectors import postgres_pool

            pg_pool = postgres_pool.get_default_pool()
            is_healthy = await pg_pool.is_healthy()
            health_status["checks"]["postgres"] = {
                "status": "healthy" if is_healthy else "unhealthy",
                "pool": await pg_pool.get_pool_stats(),
            }
            if not is_healthy:
                health_status["status"] = "degraded"
        except Exception as e:
            health_status["checks"]["postgres"] = {"status": "unhealthy", "error": str(e)}
            health_status["status"] = "degraded"
    else:
        health_status["checks"]["store"] = {"backend": settings.RESULTS_BACKEND}

    return health_status


# ============================================================================
# API Routes
# ============================================================================

from streamsender.api.routes import config as config_router  # noqa: E402
from streamsender.api.routes import stats  # noqa: E402
from streamsender.api.routes import stream  # noqa: E402

app.include_router(stats.router, prefix="/stats", tags=["stats"])
app.include_router(stream.router, prefix="/stream", tags=["stream"])
app.include_router(config_router.router, prefix="/config", tags=["config"])


if __name__ == "__main__":
    import uvicorn

    # log_config=None prevents uvicorn from overriding our logging setup.
    uvicorn.run(
        "streamsender.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.APP_RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,
    )
