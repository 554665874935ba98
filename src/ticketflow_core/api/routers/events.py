"""Server-Sent Events stream of committed changes."""
import asyncio
import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from ticketflow_core.config import get_settings
from ticketflow_core.notifier import ChangeNotifier
from ticketflow_core.permissions import Actor

from ..dependencies import get_change_notifier, get_current_actor

logger = logging.getLogger("ticketflow-core.events")

router = APIRouter(tags=["events"])


async def event_stream(
    request: Request,
    notifier: ChangeNotifier,
    keepalive_seconds: float,
) -> AsyncIterator[str]:
    """
    Yield SSE frames for one client until it disconnects.

    The subscription is registered before the hello frame, so every change
    committed after the client sees hello is delivered.
    """
    subscription = notifier.subscribe(loop=asyncio.get_running_loop())
    try:
        yield f"event: hello\ndata: {json.dumps({'subscription': subscription.id})}\n\n"
        while True:
            if await request.is_disconnected():
                break
            event = await subscription.next_event(keepalive_seconds)
            if event is None:
                if subscription.closed:
                    break
                yield ": keep-alive\n\n"
                continue
            yield event.to_sse()
    finally:
        notifier.unsubscribe(subscription)
        logger.debug(f"Event stream {subscription.id} closed")


@router.get("")
async def stream_events(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    notifier: ChangeNotifier = Depends(get_change_notifier),
):
    """
    Stream ticket and comment changes as Server-Sent Events.

    Event names: ticket:created, ticket:updated, comment:created.
    """
    logger.info(f"User {actor.id} opened the event stream")
    return StreamingResponse(
        event_stream(request, notifier, get_settings().event_keepalive_seconds),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
