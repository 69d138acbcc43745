import pytest
from fakeredis import FakeAsyncRedis, FakeServer

from vinted_notifier.core.store import RedisStore


@pytest.fixture
def redis_client():
    # テストごとに独立したサーバー
    return FakeAsyncRedis(server=FakeServer(), decode_responses=True)


@pytest.fixture
async def store(redis_client):
    store = RedisStore(client=redis_client)
    yield store
    await store.close()


@pytest.fixture
def down_server():
    server = FakeServer()
    server.connected = False
    return server


@pytest.fixture
async def down_store(down_server):
    """接続できないRedisを指すストア"""
    store = RedisStore(client=FakeAsyncRedis(server=down_server, decode_responses=True))
    yield store
    await store.close()
