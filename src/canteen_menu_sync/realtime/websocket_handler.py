"""WebSocket transport for the connection registry.

Clients speak a small JSON protocol over ``/ws``:

    {"action": "join-canteen", "canteenId": "c1"}
    {"action": "leave-canteen", "canteenId": "c1"}
    {"action": "subscribe-global"} / {"action": "unsubscribe-global"}
    {"action": "ping"}

Server frames are ``{"event": <name>, "data": {...}}``. Any inbound message
counts as a heartbeat.
"""

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from canteen_menu_sync.realtime.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)

# Close code used when the registry dropped the connection (reaped or failed send)
CLOSE_CODE_EXPIRED = 4000


def _frame(event: str, **data: Any) -> dict[str, Any]:
    return {"event": event, "data": data}


def handle_client_message(
    registry: ConnectionRegistry, connection_id: str, message: Any
) -> dict[str, Any]:
    """Apply one client message to the registry.

    Args:
        registry: The connection registry
        connection_id: Connection the message arrived on
        message: Decoded JSON message

    Returns:
        The frame to send back to the client
    """
    if not isinstance(message, dict):
        return _frame("error", message="Message must be a JSON object")

    action = message.get("action")

    if action == "ping":
        return _frame("pong")

    if action in ("join-canteen", "leave-canteen"):
        canteen_id = message.get("canteenId")
        if canteen_id is None or str(canteen_id) == "":
            return _frame("error", message=f"{action} requires canteenId")
        canteen_id = str(canteen_id)

        if action == "join-canteen":
            registry.join(connection_id, canteen_id)
            return _frame("joined-canteen", canteenId=canteen_id)

        registry.leave(connection_id, canteen_id)
        return _frame("left-canteen", canteenId=canteen_id)

    if action == "subscribe-global":
        registry.subscribe_global(connection_id)
        return _frame("subscribed-global")

    if action == "unsubscribe-global":
        registry.unsubscribe_global(connection_id)
        return _frame("unsubscribed-global")

    return _frame("error", message=f"Unknown action: {action}")


async def serve_websocket(websocket: WebSocket, registry: ConnectionRegistry) -> None:
    """Run one WebSocket connection until the client goes away.

    The connection is removed from every room on exit, however the loop ends.
    """
    await websocket.accept()
    connection_id = f"conn_{uuid.uuid4().hex[:12]}"
    registry.register(connection_id, websocket.send_json)
    await websocket.send_json(_frame("connected", connectionId=connection_id))

    try:
        while True:
            text = await websocket.receive_text()

            if not registry.is_registered(connection_id):
                await websocket.close(code=CLOSE_CODE_EXPIRED)
                break

            registry.touch(connection_id)
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                await websocket.send_json(_frame("error", message="Invalid JSON payload"))
                continue

            await websocket.send_json(handle_client_message(registry, connection_id, message))

    except WebSocketDisconnect as e:
        logger.info(f"WebSocket {connection_id} closed by client (code {e.code})")
    finally:
        registry.on_disconnect(connection_id)


async def run_heartbeat_reaper(
    registry: ConnectionRegistry, timeout_seconds: float, interval_seconds: float
) -> None:
    """Periodically disconnect connections that stopped sending heartbeats.

    Runs until cancelled.
    """
    logger.info(f"Heartbeat reaper running (timeout {timeout_seconds}s, every {interval_seconds}s)")
    while True:
        await asyncio.sleep(interval_seconds)
        reaped = registry.reap_stale(timeout_seconds)
        if reaped:
            logger.warning(f"Reaped {len(reaped)} silent connection(s)")
