"""
Run Configuration Model

Defines the configuration sent to stream-tester when a batch of streams is started.
Field names follow the stream-tester `/start_streams` JSON body.
"""

from pydantic import BaseModel, ConfigDict, Field


class RunConfig(BaseModel):
    """
    Configuration for one batch of simulated broadcasts.

    Instances are frozen: a snapshot handed to a dispatch is never mutated, and
    variants are derived with ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    host: str = Field("localhost", description="Host name of broadcaster to stream to")
    rtmp: int = Field(
        1935, ge=0, le=65535, description="Port number to stream RTMP stream to"
    )
    media: int = Field(
        8935, ge=0, le=65535, description="Port number to download media from"
    )
    file_name: str = Field(
        "bbb_sunflower_1080p_30fps_normal_t02.mp4",
        description="Path to file to stream (must exist on the stream-tester host)",
    )
    repeat: int = Field(1, ge=1, description="How many times to repeat streaming")
    simultaneous: int = Field(
        1, ge=1, description="How many simultaneous streams stream into broadcaster"
    )
    profiles_num: int = Field(
        0, ge=0, description="How many transcoding profiles broadcaster is configured with"
    )
    do_not_clear_stats: bool = Field(
        False, description="Keep stream-tester stats from previous runs"
    )
    measure_latency: bool = Field(False, description="Measure per-segment latencies")

    def for_dispatch(self, *, external: bool) -> "RunConfig":
        """
        Return the snapshot that is actually sent to stream-tester.

        Latency is always measured. Externally triggered runs also start from
        cleared stats so they are comparable with each other.
        """
        update: dict = {"measure_latency": True}
        if external:
            update["do_not_clear_stats"] = False
        return self.model_copy(update=update)
