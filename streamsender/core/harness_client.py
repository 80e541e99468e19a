"""
stream-tester HTTP client

Thin async wrapper around the stream-tester server API:
- POST /start_streams  start a batch of streams, returns its base manifest ID
- GET  /stats          stats for a base manifest ID
- GET  /stop           stop all running streams

Every call uses a fixed timeout and is attempted exactly once.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from streamsender.config import settings
from streamsender.core.errors import (
    MalformedResponse,
    RemoteRejected,
    RemoteUnavailable,
    StopFailed,
)
from streamsender.models import RunConfig, Stats

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 8.0


class StartStreamsResponse(BaseModel):
    success: bool
    base_manifest_id: str = ""


def _base_url(address: str) -> str:
    address = str(address or "").strip().rstrip("/")
    if address.startswith(("http://", "https://")):
        return address
    return f"http://{address}"


def _status_text(response: httpx.Response) -> str:
    return f"{response.status_code} {response.reason_phrase}".strip()


class HarnessClient:
    """
    Async client for a single stream-tester server.

    The underlying httpx.AsyncClient is safe to share between the schedule loop
    and any number of concurrent poll tasks.
    """

    def __init__(
        self,
        address: str,
        *,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        request_latencies: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = _base_url(address)
        self.timeout = timeout
        self.request_latencies = request_latencies
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        logger.debug("stream-tester request: %s %s%s", method, self.base_url, path)
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteUnavailable(
                f"{method} {self.base_url}{path} timed out after {self.timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteUnavailable(
                f"{method} {self.base_url}{path} failed: {type(e).__name__}: {e}"
            ) from e

    async def start_run(self, config: RunConfig) -> str:
        """
        Ask stream-tester to start streaming with ``config``.

        Returns:
            The base manifest ID identifying the run.
        """
        response = await self._send(
            "POST", "/start_streams", json=config.model_dump(mode="json")
        )
        if response.status_code != 200:
            raise RemoteRejected(f"unable to start streams: {_status_text(response)}")

        try:
            body = StartStreamsResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise MalformedResponse(f"unable to parse start_streams response: {e}") from e

        if not body.success:
            raise RemoteRejected("server failed to start streams")
        if not body.base_manifest_id:
            raise MalformedResponse("start_streams response has no base_manifest_id")
        return body.base_manifest_id

    async def fetch_stats(self, manifest_id: str) -> Stats:
        """Fetch the current stats of the run identified by ``manifest_id``."""
        params: dict[str, str] = {}
        if self.request_latencies:
            params["latencies"] = ""
        params["base_manifest_id"] = manifest_id

        response = await self._send(
            "GET",
            "/stats",
            params=params,
            headers={"Content-Type": "application/json"},
        )
        if response.status_code != 200:
            raise RemoteRejected(f"unable to fetch stats: {_status_text(response)}")

        try:
            return Stats.model_validate_json(response.content)
        except ValidationError as e:
            raise MalformedResponse(f"unable to parse stats response: {e}") from e

    async def stop_all(self) -> None:
        """Stop every stream running on stream-tester."""
        try:
            response = await self._send("GET", "/stop")
        except RemoteUnavailable as e:
            raise StopFailed(f"unable to stop streams: {e}") from e
        if response.status_code != 200:
            raise StopFailed(f"unable to stop streams: {_status_text(response)}")

    async def close(self) -> None:
        await self._client.aclose()


def create_default_client() -> HarnessClient:
    """Build a client from settings."""
    return HarnessClient(
        settings.HARNESS_ADDRESS,
        timeout=settings.HARNESS_TIMEOUT_SECONDS,
        request_latencies=settings.HARNESS_REQUEST_LATENCIES,
    )
