"""
Error types raised by the engine, the stream-tester client and the results store.
"""


class StreamSenderError(Exception):
    """Base class for all stream sender errors."""


class HarnessError(StreamSenderError):
    """A call to stream-tester did not succeed."""


class RemoteUnavailable(HarnessError):
    """stream-tester could not be reached (connection error or timeout)."""


class RemoteRejected(HarnessError):
    """stream-tester answered with a non-200 status or reported failure."""


class MalformedResponse(HarnessError):
    """stream-tester answered with a body that does not have the expected shape."""


class StopFailed(HarnessError):
    """stream-tester did not confirm that all streams were stopped."""


class StoreError(StreamSenderError):
    """Base class for results store errors."""


class StatsNotFound(StoreError, KeyError):
    """No stats are stored for the requested base manifest ID."""

    def __init__(self, manifest_id: str) -> None:
        super().__init__(manifest_id)
        self.manifest_id = manifest_id

    def __str__(self) -> str:
        return f"no stats for base manifest ID {self.manifest_id!r}"


class StorageFailure(StoreError):
    """The results store failed to read or write."""


class ScheduleStateError(StreamSenderError):
    """The schedule cannot make the requested transition."""
