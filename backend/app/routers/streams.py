import asyncio
import json
import logging
from contextlib import suppress

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import redis.asyncio as redis

from ..config import GLOBAL_CHANNEL, REDIS_URL

logger = logging.getLogger(__name__)

router = APIRouter()

redis_client = redis.from_url(REDIS_URL, decode_responses=True)


def match_channel(mid: str) -> str:
    return f"match:{mid}"


async def _publish(channel: str, message: dict) -> bool:
    # Live updates are best effort; the ledger is already committed.
    try:
        await redis_client.publish(channel, json.dumps(message))
    except (redis.RedisError, OSError) as exc:
        logger.warning("Failed to publish to %s: %s", channel, exc)
        return False
    return True


async def broadcast(mid: str, message: dict) -> bool:
    """Publish a message for a match to all of its subscribers."""
    return await _publish(match_channel(mid), message)


async def broadcast_highlight(message: dict) -> bool:
    """Publish a cross-match highlight (boundary or wicket)."""
    return await _publish(GLOBAL_CHANNEL, message)


async def _stream(ws: WebSocket, *channels: str) -> None:
    try:
        async with redis_client.pubsub() as pubsub:
            # subscribe before accepting so a client never misses a publish
            await pubsub.subscribe(*channels)
            await ws.accept()

            async def sender() -> None:
                try:
                    async for msg in pubsub.listen():
                        if msg.get("type") == "message":
                            payload = json.loads(msg["data"])
                            payload.setdefault("channel", msg.get("channel"))
                            await ws.send_json(payload)
                except redis.ConnectionError:
                    await ws.close()

            send_task = asyncio.create_task(sender())
            try:
                while True:
                    await ws.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                send_task.cancel()
                with suppress(asyncio.CancelledError):
                    await send_task
                await pubsub.unsubscribe(*channels)
    except redis.ConnectionError:
        logger.warning("Redis unavailable; closing stream for %s", ", ".join(channels))
        await ws.close()


@router.websocket("/matches/stream")
async def global_stream(ws: WebSocket) -> None:
    """Stream boundaries and wickets from every live match."""
    await _stream(ws, GLOBAL_CHANNEL)


@router.websocket("/matches/{mid}/stream")
async def match_stream(ws: WebSocket, mid: str) -> None:
    """Stream one match's updates plus the cross-match highlights."""
    await _stream(ws, match_channel(mid), GLOBAL_CHANNEL)
