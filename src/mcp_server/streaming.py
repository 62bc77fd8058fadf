"""Server-Sent Events stream for the MCP endpoint.

A GET on the MCP endpoint opens a stream that announces the POST URL in
an `endpoint` event and then keeps the connection alive with periodic
comment lines until the client goes away.
"""

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from shared.logging import get_logger

logger = get_logger(__name__)

KEEPALIVE_COMMENT = ": ping\n\n"


def format_sse_event(event: str, data: Any) -> str:
    """Frame one SSE event; non-string data is JSON encoded."""
    if not isinstance(data, str):
        data = json.dumps(data)
    lines = "".join(f"data: {line}\n" for line in data.splitlines() or [""])
    return f"event: {event}\n{lines}\n"


async def event_stream(
    post_url: str,
    keepalive_interval: float = 30.0,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    session_id: Optional[str] = None,
) -> AsyncIterator[str]:
    """
    Yield the SSE frames of one GET connection.

    Args:
        post_url: URL clients should POST messages to
        keepalive_interval: Seconds between keep-alive comments
        is_disconnected: Coroutine function reporting client disconnects
        session_id: Session id, for logging only
    """
    logger.info("SSE stream opened", session_id=session_id, url=post_url)
    try:
        yield format_sse_event("endpoint", {"url": post_url})
        while True:
            await asyncio.sleep(keepalive_interval)
            if is_disconnected is not None and await is_disconnected():
                break
            yield KEEPALIVE_COMMENT
    finally:
        logger.info("SSE stream closed", session_id=session_id)
