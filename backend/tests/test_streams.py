import json

import fakeredis.aioredis
import pytest
import redis.asyncio as redis
from fastapi import FastAPI
from fastapi.testclient import TestClient
import ulid

from app.routers import streams


app = FastAPI()
app.include_router(streams.router)


def test_broadcast_reaches_multiple_clients() -> None:
    streams.redis_client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    mid = str(ulid.new())
    with TestClient(app) as client1, TestClient(app) as client2:
        with client1.websocket_connect(f"/matches/{mid}/stream") as ws1, \
             client2.websocket_connect(f"/matches/{mid}/stream") as ws2:
            client1.portal.call(streams.broadcast, mid, {"type": "live", "eventCount": 1})
            assert ws1.receive_json() == {"type": "live", "eventCount": 1}
            assert ws2.receive_json() == {"type": "live", "eventCount": 1}


@pytest.mark.anyio
async def test_broadcast_publishes_on_match_channel() -> None:
    fake = fakeredis.aioredis.FakeRedis(decode_responses=True)
    streams.redis_client = fake
    mid = str(ulid.new())

    async with fake.pubsub() as pubsub:
        await pubsub.subscribe(streams.channel_for(mid))
        await pubsub.get_message(timeout=1)  # subscribe confirmation
        assert await streams.broadcast(mid, {"type": "live", "prompt": "NONE"}) is True
        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1)

    assert msg["channel"] == f"match:{mid}"
    assert json.loads(msg["data"]) == {"type": "live", "prompt": "NONE"}


class _DownRedis:
    async def publish(self, channel, message):
        raise redis.ConnectionError("connection refused")


@pytest.mark.anyio
async def test_broadcast_failure_is_swallowed(caplog) -> None:
    streams.redis_client = _DownRedis()

    assert await streams.broadcast("m1", {"type": "live"}) is False
    assert "Could not broadcast update for match m1" in caplog.text
