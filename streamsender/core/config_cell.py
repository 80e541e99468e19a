"""
Copy-on-write holder for the current run configuration.

Readers get the frozen snapshot that was current at the time of the call;
writers swap in a new snapshot. Runs that were already dispatched keep the
snapshot they captured.
"""

from __future__ import annotations

import threading

from streamsender.models import RunConfig


class ConfigCell:
    def __init__(self, initial: RunConfig) -> None:
        self._lock = threading.Lock()
        self._current = initial

    def get(self) -> RunConfig:
        with self._lock:
            return self._current

    def set(self, config: RunConfig) -> None:
        if not isinstance(config, RunConfig):
            raise TypeError(f"expected RunConfig, got {type(config).__name__}")
        with self._lock:
            self._current = config
