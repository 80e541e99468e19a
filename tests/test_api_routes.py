import pytest
import pytest_asyncio
from fastapi import HTTPException, Response

from streamsender.api.routes import config as config_routes
from streamsender.api.routes import stats as stats_routes
from streamsender.api.routes import stream as stream_routes
from streamsender.core import engine as engine_module
from streamsender.core.engine import Engine, ScheduleState
from streamsender.core.errors import (
    MalformedResponse,
    RemoteRejected,
    RemoteUnavailable,
    StopFailed,
    StorageFailure,
)
from streamsender.core.results_store import MemoryResultStore
from streamsender.models import RunConfig, Stats


class _StubHarness:
    def __init__(self, *, start_error=None, stop_error=None):
        self.start_error = start_error
        self.stop_error = stop_error
        self.started: list[RunConfig] = []
        self.stops = 0

    async def start_run(self, config: RunConfig) -> str:
        self.started.append(config)
        if self.start_error is not None:
            raise self.start_error
        return "abc"

    async def fetch_stats(self, manifest_id: str) -> Stats:
        return Stats(finished=True)

    async def stop_all(self) -> None:
        self.stops += 1
        if self.stop_error is not None:
            raise self.stop_error


@pytest_asyncio.fixture
async def install_engine(monkeypatch):
    engines: list[Engine] = []

    def _install(harness=None, store=None, config=None) -> Engine:
        engine = Engine(
            config=config or RunConfig(host="broadcaster"),
            harness=harness or _StubHarness(),
            store=store or MemoryResultStore(),
            poll_interval_seconds=3600,
        )
        monkeypatch.setattr(engine_module, "_default_engine", engine)
        engines.append(engine)
        return engine

    yield _install

    for engine in engines:
        await engine.shutdown(cancel_polls=True, timeout_seconds=1.0)


@pytest.mark.asyncio
async def test_select_stats_returns_stored_record(install_engine):
    engine = install_engine()
    await engine.store.insert("abc", Stats(sent_segments=7, finished=True))

    stats = await stats_routes.select_stats(base_manifest_id="abc")

    assert stats.sent_segments == 7
    assert stats.finished is True


@pytest.mark.asyncio
async def test_select_stats_unknown_id_is_404(install_engine):
    install_engine()

    with pytest.raises(HTTPException) as exc_info:
        await stats_routes.select_stats(base_manifest_id="missing")

    assert exc_info.value.status_code == 404
    assert "missing" in exc_info.value.detail


@pytest.mark.asyncio
async def test_all_stats_storage_failure_is_500(install_engine):
    class _BrokenStore(MemoryResultStore):
        async def all(self):
            raise StorageFailure("database is down")

    install_engine(store=_BrokenStore())

    with pytest.raises(HTTPException) as exc_info:
        await stats_routes.all_stats()

    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_all_stats_lists_every_run(install_engine):
    engine = install_engine()
    await engine.store.insert("a", Stats())
    await engine.store.insert("b", Stats())

    result = await stats_routes.all_stats()

    assert set(result) == {"a", "b"}


@pytest.mark.asyncio
async def test_start_stream_returns_manifest_and_forces_flags(install_engine):
    harness = _StubHarness()
    engine = install_engine(harness=harness)

    response = await stream_routes.start_stream(
        RunConfig(host="other", do_not_clear_stats=True)
    )

    assert response.success is True
    assert response.base_manifest_id == "abc"
    assert harness.started[0].measure_latency is True
    assert harness.started[0].do_not_clear_stats is False
    assert engine.in_flight_runs() == ["abc"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (RemoteUnavailable("connection refused"), 503),
        (RemoteRejected("stream-tester returned 500"), 502),
        (MalformedResponse("missing base_manifest_id"), 502),
    ],
)
async def test_start_stream_harness_errors(install_engine, error, status_code):
    engine = install_engine(harness=_StubHarness(start_error=error))

    with pytest.raises(HTTPException) as exc_info:
        await stream_routes.start_stream(RunConfig())

    assert exc_info.value.status_code == status_code
    assert engine.in_flight_runs() == []


@pytest.mark.asyncio
async def test_stop_stream_stops_schedule(install_engine):
    harness = _StubHarness()
    engine = install_engine(harness=harness)

    response = await stream_routes.stop_stream()

    assert response.success is True
    assert response.state == "stopped"
    assert engine.state is ScheduleState.STOPPED
    assert harness.stops == 1


@pytest.mark.asyncio
async def test_stop_stream_failure_is_502(install_engine):
    harness = _StubHarness(stop_error=StopFailed("stream-tester returned 500"))
    engine = install_engine(harness=harness)

    with pytest.raises(HTTPException) as exc_info:
        await stream_routes.stop_stream()

    assert exc_info.value.status_code == 502
    assert engine.state is ScheduleState.STOPPED


@pytest.mark.asyncio
async def test_update_config_replaces_config(install_engine):
    engine = install_engine()

    response = await config_routes.update_config(
        RunConfig(host="new-host", simultaneous=4, do_not_clear_stats=True)
    )

    assert isinstance(response, Response)
    assert response.status_code == 204
    current = await config_routes.get_config()
    assert current is engine.get_config()
    assert current.host == "new-host"
    assert current.simultaneous == 4
    assert current.do_not_clear_stats is False


@pytest.mark.asyncio
async def test_health_reports_engine_state(install_engine, monkeypatch):
    from streamsender import main as main_app

    monkeypatch.setattr(main_app.settings, "RESULTS_BACKEND", "memory")
    install_engine()

    health = await main_app.health_check()

    assert health["status"] == "healthy"
    assert health["checks"]["engine"] == {"state": "idle", "in_flight_runs": 0}
    assert health["checks"]["store"] == {"backend": "memory"}


@pytest.mark.asyncio
async def test_health_without_engine_is_degraded(monkeypatch):
    from streamsender import main as main_app

    monkeypatch.setattr(engine_module, "_default_engine", None)

    health = await main_app.health_check()

    assert health["status"] == "degraded"
    assert health["checks"]["engine"]["status"] == "not_initialized"
