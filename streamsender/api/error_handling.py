"""
Shared HTTP error mapping for API routes.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from streamsender.core.errors import (
    MalformedResponse,
    RemoteRejected,
    RemoteUnavailable,
    StatsNotFound,
    StopFailed,
)

logger = logging.getLogger(__name__)


def http_exception(action: str, e: Exception) -> HTTPException:
    """
    Translate an error raised while handling ``action`` into an HTTPException.

    stream-tester failures map to 502/503 so the dashboard can tell them apart
    from our own failures, which are logged and reported as 500.
    """
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, StatsNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, RemoteUnavailable):
        logger.warning("Failed to %s: %s", action, e)
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)
        )
    if isinstance(e, (RemoteRejected, MalformedResponse, StopFailed)):
        logger.warning("Failed to %s: %s", action, e)
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    logger.error("Failed to %s: %s: %s", action, type(e).__name__, e, exc_info=e)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {e}",
    )
