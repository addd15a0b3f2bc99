import fakeredis
import pytest


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    """
    Redis для локов и RedisExpiringStore подменяется на fakeredis;
    хранилища и кеш пересоздаются для каждого теста.
    """
    from django.core.cache import cache

    from core import lock, stores

    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    monkeypatch.setattr(lock, 'redis_client', client)
    monkeypatch.setattr(stores, 'redis_client', client)
    stores.reset_stores()
    cache.clear()
    yield client
    stores.reset_stores()
    cache.clear()
