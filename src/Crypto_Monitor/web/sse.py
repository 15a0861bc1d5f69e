"""Server-Sent Events helpers for the live price feed.

Streams broadcast-hub events to one SSE client and wraps the
stream in an ``EventSourceResponse``.
"""

import logging
from collections.abc import AsyncGenerator, Sequence

from sse_starlette.sse import EventSourceResponse

from Crypto_Monitor.services.broadcast import BroadcastHub

logger = logging.getLogger(__name__)

SSE_PING_SECONDS = 15


async def subscriber_events(
    hub: BroadcastHub, symbols: Sequence[str] = ()
) -> AsyncGenerator[dict[str, str]]:
    """Yield hub events for a new subscriber as named SSE events.

    The subscriber is registered when streaming starts and disconnected
    from the hub when the client goes away. A response that is never
    iterated leaves nothing behind in the hub.
    """
    subscriber = hub.connect()
    if symbols:
        hub.subscribe(subscriber, symbols)
    try:
        while True:
            event = await subscriber.next_event()
            yield {"event": event.event.value, "data": event.model_dump_json()}
    finally:
        hub.disconnect(subscriber)
        logger.debug("SSE client %s closed", subscriber.client_id)


def create_sse_response(
    generator: AsyncGenerator[dict[str, str]] | AsyncGenerator[str],
    *,
    media_type: str = "text/event-stream",
) -> EventSourceResponse:
    """Create an SSE response from an async generator of events.

    Args:
        generator: Async generator yielding SSE event dicts or JSON strings.
        media_type: MIME type for the response (default: text/event-stream).

    Returns:
        An EventSourceResponse suitable for returning from a FastAPI route handler.
    """
    return EventSourceResponse(
        content=generator,
        media_type=media_type,
        ping=SSE_PING_SECONDS,
    )
