import json
from typing import Optional, Sequence

from fastapi import APIRouter, Query, WebSocket
import redis.asyncio as aioredis
from taskguard.config import REDIS_URL, EVENTS_CHANNEL

router = APIRouter()
r = aioredis.from_url(REDIS_URL, decode_responses=True)

def wanted(data: str, prefixes: Sequence[str]) -> bool:
    """Match an event against type prefixes such as "job." or "circuit."; no prefixes means everything."""
    if not prefixes:
        return True
    try:
        event_type = json.loads(data).get("type", "")
    except (ValueError, AttributeError):
        return False
    return any(event_type.startswith(p) for p in prefixes)

@router.websocket("/ws/events")
async def ws_events(websocket: WebSocket, types: Optional[str] = Query(None)):
    prefixes = [t.strip() for t in (types or "").split(",") if t.strip()]
    await websocket.accept()
    pubsub = r.pubsub()
    await pubsub.subscribe(EVENTS_CHANNEL)
    await websocket.send_json({"type": "WS_CONNECTED", "channel": EVENTS_CHANNEL, "types": prefixes})

    try:
        async for msg in pubsub.listen():
            if msg and msg.get("type") == "message" and wanted(msg["data"], prefixes):
                await websocket.send_text(msg["data"])
    finally:
        await pubsub.unsubscribe(EVENTS_CHANNEL)
        await pubsub.close()
        await websocket.close()
