import threading

import pytest

from streamsender.core.config_cell import ConfigCell
from streamsender.models import RunConfig


def test_get_returns_latest_set():
    first = RunConfig(host="first")
    second = RunConfig(host="second")
    cell = ConfigCell(first)

    assert cell.get() is first
    cell.set(second)
    assert cell.get() is second


def test_set_rejects_non_config():
    cell = ConfigCell(RunConfig())
    with pytest.raises(TypeError):
        cell.set({"host": "dict"})


def test_concurrent_readers_only_see_assigned_snapshots():
    configs = [
        RunConfig(host=f"host-{i}", simultaneous=i + 1, repeat=i + 1) for i in range(20)
    ]
    cell = ConfigCell(configs[0])
    stop = threading.Event()
    seen: list[RunConfig] = []
    seen_lock = threading.Lock()

    def writer() -> None:
        for _ in range(200):
            for config in configs:
                cell.set(config)

    def reader() -> None:
        local = []
        while not stop.is_set():
            local.append(cell.get())
        with seen_lock:
            seen.extend(local)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    writers = [threading.Thread(target=writer) for _ in range(2)]
    for t in readers + writers:
        t.start()
    for t in writers:
        t.join()
    stop.set()
    for t in readers:
        t.join()

    assert seen
    ids = {id(c) for c in configs}
    for snapshot in seen:
        assert id(snapshot) in ids
        assert snapshot.simultaneous == snapshot.repeat
        assert snapshot.host == f"host-{snapshot.simultaneous - 1}"
