import json

from backoffice.storage.sessions import MemorySessionStore, RedisSessionStore


class FakeAsyncRedis:
    def __init__(self):
        self.values = {}
        self.ttls = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self.values[key] = value
        self.ttls[key] = ex

    async def delete(self, key):
        self.values.pop(key, None)
        self.ttls.pop(key, None)


def _redis_store() -> RedisSessionStore:
    store: RedisSessionStore = RedisSessionStore.__new__(RedisSessionStore)
    store.redis_url = "redis://unused"
    store.client = FakeAsyncRedis()
    return store


class TestMemorySessionStore:
    async def test_round_trip_and_expiry(self, clock):
        store = MemorySessionStore(clock=clock)
        await store.set("sid", {"user_id": 1}, ttl=60)
        assert await store.get("sid") == {"user_id": 1}

        clock.advance(seconds=61)
        assert await store.get("sid") is None
        assert len(store) == 0

    async def test_returned_payload_is_detached(self, clock):
        store = MemorySessionStore(clock=clock)
        await store.set("sid", {"flash": {"success": "hi"}}, ttl=60)
        payload = await store.get("sid")
        payload["flash"]["success"] = "changed"
        assert (await store.get("sid"))["flash"]["success"] == "hi"

    async def test_destroy(self, clock):
        store = MemorySessionStore(clock=clock)
        await store.set("sid", {}, ttl=60)
        await store.destroy("sid")
        await store.destroy("sid")
        assert await store.get("sid") is None


class TestRedisSessionStore:
    async def test_set_uses_prefixed_key_and_ttl(self):
        store = _redis_store()
        await store.set("abc", {"user_id": 7}, ttl=900)
        assert json.loads(store.client.values["session:abc"]) == {"user_id": 7}
        assert store.client.ttls["session:abc"] == 900
        assert await store.get("abc") == {"user_id": 7}

    async def test_corrupt_payload_is_discarded(self):
        store = _redis_store()
        store.client.values["session:abc"] = "{not json"
        assert await store.get("abc") is None
        assert "session:abc" not in store.client.values

    async def test_destroy(self):
        store = _redis_store()
        await store.set("abc", {}, ttl=10)
        await store.destroy("abc")
        assert await store.get("abc") is None
