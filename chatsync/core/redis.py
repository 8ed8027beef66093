import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError
from typing import Any, Callable, List, Optional
import json

from chatsync.utils.exceptions import TransientNetworkError

UPDATE_RETRIES = 10


class RedisClient:
    def __init__(self, url: str):
        self.url = url
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        """Open the connection pool lazily"""
        if self.redis is None:
            self.redis = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True
            )

    async def disconnect(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    async def _client(self) -> redis.Redis:
        if self.redis is None:
            await self.connect()
        return self.redis

    async def get(self, key: str) -> Optional[str]:
        try:
            return await (await self._client()).get(key)
        except RedisError as e:
            raise TransientNetworkError(f"Redis GET failed: {e}") from e

    async def set(self, key: str, value: str) -> bool:
        try:
            return await (await self._client()).set(key, value)
        except RedisError as e:
            raise TransientNetworkError(f"Redis SET failed: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            return await (await self._client()).delete(key) > 0
        except RedisError as e:
            raise TransientNetworkError(f"Redis DEL failed: {e}") from e

    async def exists(self, key: str) -> bool:
        """True when the key is present"""
        try:
            return await (await self._client()).exists(key) > 0
        except RedisError as e:
            raise TransientNetworkError(f"Redis EXISTS failed: {e}") from e

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        try:
            return await (await self._client()).mget(keys)
        except RedisError as e:
            raise TransientNetworkError(f"Redis MGET failed: {e}") from e

    async def sadd(self, key: str, member: str) -> None:
        try:
            await (await self._client()).sadd(key, member)
        except RedisError as e:
            raise TransientNetworkError(f"Redis SADD failed: {e}") from e

    async def srem(self, key: str, member: str) -> None:
        try:
            await (await self._client()).srem(key, member)
        except RedisError as e:
            raise TransientNetworkError(f"Redis SREM failed: {e}") from e

    async def smembers(self, key: str) -> List[str]:
        try:
            return sorted(await (await self._client()).smembers(key))
        except RedisError as e:
            raise TransientNetworkError(f"Redis SMEMBERS failed: {e}") from e

    async def publish(self, channel: str, message: str) -> None:
        try:
            await (await self._client()).publish(channel, message)
        except RedisError as e:
            raise TransientNetworkError(f"Redis PUBLISH failed: {e}") from e

    async def pubsub(self):
        """New pub/sub connection; the caller owns and closes it"""
        return (await self._client()).pubsub(ignore_subscribe_messages=True)

    async def get_json(self, key: str) -> Optional[dict]:
        """Decode a JSON value; undecodable values read as missing"""
        value = await self.get(key)
        if value:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return None
        return None

    async def set_json(self, key: str, value: Any) -> bool:
        """Store a JSON encoded value"""
        try:
            json_str = json.dumps(value)
        except (TypeError, ValueError):
            return False
        return await self.set(key, json_str)

    async def update_json(self, key: str, mutate: Callable[[dict], dict]) -> Optional[dict]:
        """Read-modify-write a JSON value under WATCH, retrying when another
        client writes the key in between. Returns None if the key is missing."""
        try:
            async with (await self._client()).pipeline(transaction=True) as pipe:
                for _ in range(UPDATE_RETRIES):
                    try:
                        await pipe.watch(key)
                        value = await pipe.get(key)
                        if value is None:
                            return None
                        try:
                            current = json.loads(value)
                        except json.JSONDecodeError:
                            return None
                        updated = mutate(current)
                        pipe.multi()
                        pipe.set(key, json.dumps(updated))
                        await pipe.execute()
                        return updated
                    except WatchError:
                        continue
        except RedisError as e:
            raise TransientNetworkError(f"Redis transaction on {key} failed: {e}") from e
        raise TransientNetworkError(f"Redis transaction on {key} kept conflicting")
