"""
Realtime websocket: streams committed ledger and promotion changes.

Clients authenticate with `?token=<access token>` (browsers and mobile
websocket clients cannot set an Authorization header). Ledger events are
filtered to the caller's account; promotion events go to everyone so
queues can refresh.

When the server cannot guarantee a gap-free stream it sends
`{"type": "resync"}` and closes with 1013; the client refetches its
balance, history and queue, then reconnects.
"""

import asyncio

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from vidgro.api.dependencies import decode_access_token
from vidgro.exceptions import AuthenticationError
from vidgro.observability.logging import get_logger
from vidgro.services.events import RealtimeBroker, Subscription, broker

logger = get_logger(__name__)

router = APIRouter()


def get_broker() -> RealtimeBroker:
    return broker


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        event = await subscription.get()
        if event is None:
            await websocket.send_json({"type": "resync"})
            await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Resync required")
            logger.info("realtime_resync_sent", account_id=str(subscription.account_id))
            return
        await websocket.send_json(event.to_message())


async def _answer_pings(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive_json()
        if isinstance(message, dict) and message.get("type") == "ping":
            await websocket.send_json({"type": "pong"})


@router.websocket("/v1/realtime")
async def realtime_feed(
    websocket: WebSocket,
    token: str | None = Query(None),
    feed: RealtimeBroker = Depends(get_broker),
) -> None:
    """Change feed for the authenticated account."""
    try:
        account_id = decode_access_token(token or "")
    except AuthenticationError as exc:
        logger.warning("realtime_auth_rejected", reason=exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Unauthorized")
        return

    await websocket.accept()
    subscription = feed.subscribe(account_id)
    await websocket.send_json({"type": "subscribed", "account_id": str(account_id)})

    tasks = [
        asyncio.create_task(_forward_events(websocket, subscription)),
        asyncio.create_task(_answer_pings(websocket)),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.error("realtime_stream_failed", account_id=str(account_id), error=str(exc))
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        feed.unsubscribe(subscription)
        logger.debug("realtime_disconnected", account_id=str(account_id))
