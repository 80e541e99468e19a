"""
Run orchestration engine.

The engine starts batches of streams on stream-tester, either on a fixed
schedule or on request, and spawns one background poll task per started run.
Each poll task fetches the run's stats until stream-tester reports it
finished, storing every successfully fetched snapshot along the way.

Schedule lifecycle: IDLE -> SCHEDULING -> STOPPED (or IDLE -> STOPPED). A
stopped engine never schedules again. dispatch_run() works in every state, and
stopping the schedule leaves running poll tasks alone.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from streamsender.core.config_cell import ConfigCell
from streamsender.core.errors import HarnessError, ScheduleStateError, StorageFailure
from streamsender.core.harness_client import HarnessClient
from streamsender.core.results_store import ResultStore
from streamsender.core.run_log_context import CURRENT_RUN_ID
from streamsender.models import RunConfig

logger = logging.getLogger(__name__)

# Grace period before the first stats request (stream-tester needs time to
# register the manifests) and delay between subsequent requests.
POLL_INTERVAL_SECONDS = 30.0


class ScheduleState(str, Enum):
    IDLE = "idle"
    SCHEDULING = "scheduling"
    STOPPED = "stopped"


class Engine:
    """
    Streams into a stream-tester server periodically and saves the resulting
    statistics into a results store.
    """

    def __init__(
        self,
        *,
        config: RunConfig,
        harness: HarnessClient,
        store: ResultStore,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        poll_max_attempts: int = 0,
    ) -> None:
        self._config = ConfigCell(config)
        self._harness = harness
        self._store = store
        self._poll_interval_seconds = float(poll_interval_seconds)
        self._poll_max_attempts = max(0, int(poll_max_attempts))

        self._state = ScheduleState.IDLE
        self._stop_event = asyncio.Event()
        self._schedule_task: Optional[asyncio.Task] = None
        self._poll_tasks: dict[str, asyncio.Task] = {}

    @property
    def state(self) -> ScheduleState:
        return self._state

    @property
    def store(self) -> ResultStore:
        return self._store

    def get_config(self) -> RunConfig:
        return self._config.get()

    def set_config(self, config: RunConfig) -> None:
        self._config.set(config)
        logger.info("Run config updated: %s", config.model_dump(mode="json"))

    def in_flight_runs(self) -> list[str]:
        """Base manifest IDs whose poll task is still running."""
        return [mid for mid, task in self._poll_tasks.items() if not task.done()]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch_run(self, config: RunConfig) -> str:
        """
        Start a run with a caller-supplied config.

        Latency measurement is forced on and stats clearing is never skipped,
        so externally triggered runs are comparable with each other.

        Raises:
            RemoteUnavailable, RemoteRejected, MalformedResponse
        """
        return await self._dispatch(config.for_dispatch(external=True))

    async def _dispatch(self, snapshot: RunConfig) -> str:
        manifest_id = await self._harness.start_run(snapshot)
        logger.info(">> Started stream with base manifest ID %s", manifest_id)
        self._spawn_poll_task(manifest_id, snapshot)
        return manifest_id

    def _spawn_poll_task(self, manifest_id: str, snapshot: RunConfig) -> None:
        # The task copies the current context, so its logs carry the run ID.
        token = CURRENT_RUN_ID.set(manifest_id)
        try:
            task = asyncio.create_task(
                self._poll_and_flush_stats(manifest_id, snapshot),
                name=f"poll-{manifest_id}",
            )
        finally:
            CURRENT_RUN_ID.reset(token)

        self._poll_tasks[manifest_id] = task

        def _done(t: asyncio.Task) -> None:
            if self._poll_tasks.get(manifest_id) is t:
                self._poll_tasks.pop(manifest_id, None)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    "Poll task for %s crashed: %s",
                    manifest_id,
                    exc,
                    exc_info=(type(exc), exc, exc.__traceback__),
                )

        task.add_done_callback(_done)

    # ------------------------------------------------------------------
    # Stats polling
    # ------------------------------------------------------------------

    async def _poll_and_flush_stats(self, manifest_id: str, snapshot: RunConfig) -> None:
        """
        Wait for a run to finish, storing each stats snapshot on the way.

        A failed stats request ends polling for the run; its last stored
        record stays as it is. A failed store write is retried on the next
        iteration with fresh stats.
        """
        attempts = 0
        while True:
            await asyncio.sleep(self._poll_interval_seconds)

            attempts += 1
            try:
                stats = await self._harness.fetch_stats(manifest_id)
            except HarnessError as e:
                logger.error("Unable to fetch stats for %s, stop polling: %s", manifest_id, e)
                return

            if stats.profiles_num == 0 and snapshot.profiles_num > 0:
                stats = stats.with_profiles_num(snapshot.profiles_num)

            stored = True
            try:
                await self._store.insert(manifest_id, stats)
            except StorageFailure as e:
                stored = False
                logger.error("Unable to insert stats for %s: %s", manifest_id, e)

            if stats.finished and stored:
                logger.info(
                    "Run %s finished: success_rate=%.4f sent=%d downloaded=%d",
                    manifest_id,
                    stats.success_rate,
                    stats.sent_segments,
                    stats.downloaded_segments,
                )
                return

            if self._poll_max_attempts and attempts >= self._poll_max_attempts:
                logger.warning(
                    "Giving up on run %s after %d stats requests", manifest_id, attempts
                )
                return

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    async def run_schedule(self, interval_seconds: float) -> None:
        """
        Start dispatching runs every ``interval_seconds`` with the current config.

        The first run is dispatched right away. Dispatch failures are logged
        and do not stop the schedule.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self._state is not ScheduleState.IDLE:
            raise ScheduleStateError(f"cannot start schedule in state {self._state.value}")

        self._state = ScheduleState.SCHEDULING
        self._schedule_task = asyncio.create_task(
            self._schedule_loop(float(interval_seconds)), name="stream-schedule"
        )
        logger.info("Schedule started, dispatching every %.0fs", interval_seconds)

    async def _schedule_loop(self, interval_seconds: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._stop_event.is_set():
            await self._scheduled_dispatch()

            # Ticks missed while dispatching are dropped, not queued up.
            now = loop.time()
            next_tick += interval_seconds
            while next_tick <= now:
                next_tick += interval_seconds

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=next_tick - now)
            except TimeoutError:
                continue
        logger.info("Schedule loop exited")

    async def _scheduled_dispatch(self) -> None:
        snapshot = self.get_config().for_dispatch(external=False)
        try:
            await self._dispatch(snapshot)
        except HarnessError as e:
            logger.error("Scheduled dispatch failed: %s", e)
        except Exception:
            logger.exception("Unexpected error in scheduled dispatch")

    async def stop_schedule(self) -> None:
        """
        Stop scheduling and ask stream-tester to stop all streams.

        Poll tasks already running keep going.

        Raises:
            StopFailed: stream-tester did not confirm the stop.
        """
        await self._halt_schedule()
        logger.info("Stopping all streams on stream-tester")
        await self._harness.stop_all()

    async def _halt_schedule(self) -> None:
        self._state = ScheduleState.STOPPED
        self._stop_event.set()
        task = self._schedule_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(
        self, *, cancel_polls: bool = False, timeout_seconds: float = 5.0
    ) -> None:
        """
        Halt the schedule and wait for (or cancel) in-flight poll tasks.

        Poll tasks still running after ``timeout_seconds`` are left alone
        unless ``cancel_polls`` is set.
        """
        await self._halt_schedule()

        tasks = [t for t in self._poll_tasks.values() if not t.done()]
        if not tasks:
            return
        if cancel_polls:
            logger.info("Cancelling %d in-flight poll task(s)", len(tasks))
            for task in tasks:
                task.cancel()

        _, pending = await asyncio.wait(tasks, timeout=timeout_seconds)
        if pending:
            logger.warning(
                "Engine shutdown timed out after %.1fs with %d poll task(s) still running",
                timeout_seconds,
                len(pending),
            )


_default_engine: Optional[Engine] = None


def get_default_engine() -> Engine:
    if _default_engine is None:
        raise RuntimeError("Engine not initialized")
    return _default_engine


def set_default_engine(engine: Optional[Engine]) -> None:
    global _default_engine
    _default_engine = engine
