import asyncio
import json
import logging
from contextlib import suppress

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import redis.asyncio as redis

from ..config import REDIS_URL

logger = logging.getLogger(__name__)

router = APIRouter()


redis_client = redis.from_url(REDIS_URL, decode_responses=True)


def channel_for(mid: str) -> str:
    return f"match:{mid}"


async def broadcast(mid: str, message: dict) -> bool:
    """Publish a live update for a match to all subscribers.

    Returns ``False`` when Redis is unavailable; the update is dropped and the
    caller carries on, since viewers resync from ``GET /live``.
    """
    try:
        await redis_client.publish(channel_for(mid), json.dumps(message))
    except redis.RedisError:
        logger.warning("Could not broadcast update for match %s", mid, exc_info=True)
        return False
    return True


@router.websocket("/matches/{mid}/stream")
async def match_stream(ws: WebSocket, mid: str) -> None:
    """Stream live match updates via a Redis pub/sub channel."""
    await ws.accept()
    channel = channel_for(mid)
    try:
        async with redis_client.pubsub() as pubsub:
            await pubsub.subscribe(channel)

            async def sender() -> None:
                try:
                    async for msg in pubsub.listen():
                        if msg.get("type") == "message":
                            await ws.send_json(json.loads(msg["data"]))
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
                await pubsub.unsubscribe(channel)
    except redis.ConnectionError:
        logger.warning("Redis unavailable for match %s stream", mid)
        await ws.close()
