import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from redis.exceptions import RedisError

from chatsync.core.redis import RedisClient
from chatsync.core.store import (
    DocumentStore, Query, Record, SnapshotCallback, Subscription, prepare_record, apply_patch
)
from chatsync.utils.exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class RedisSubscription(Subscription):
    """Live query fed by change notifications on the collection's channel"""

    def __init__(self, store: "RedisDocumentStore", collection: str, query: Query, callback: SnapshotCallback):
        super().__init__(collection, query, callback)
        self.store = store
        self._listener: Optional[asyncio.Task] = None

    def start(self) -> "Subscription":
        super().start()
        self._listener = asyncio.get_running_loop().create_task(self._listen())
        return self

    def cancel(self):
        if self._listener is not None and not self._listener.done():
            self._listener.cancel()
        super().cancel()

    async def _listen(self):
        pubsub = await self.store.client.pubsub()
        channel = self.store.channel(self.collection)
        try:
            await pubsub.subscribe(channel)
            self.push(await self.store.query(self.collection, self.query))
            async for _ in pubsub.listen():
                self.push(await self.store.query(self.collection, self.query))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Live query on {self.collection} stopped: {e}")
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except RedisError as e:
                logger.warning(f"Error closing pub/sub for {self.collection}: {e}")


class RedisDocumentStore(DocumentStore):
    """Document store on Redis.

    Each record is a JSON string under <prefix>:<collection>:<id>, each collection
    keeps a set of its ids, and every write publishes the record id on
    <prefix>:changes:<collection> so live queries can re-run.
    """

    def __init__(self, client: RedisClient, prefix: str = "chatsync"):
        self.client = client
        self.prefix = prefix
        self.subscriptions: List[Subscription] = []

    def record_key(self, collection: str, record_id: str) -> str:
        return f"{self.prefix}:{collection}:{record_id}"

    def index_key(self, collection: str) -> str:
        return f"{self.prefix}:{collection}:_ids"

    def channel(self, collection: str) -> str:
        return f"{self.prefix}:changes:{collection}"

    async def create(self, collection: str, record: Record) -> str:
        record_id, prepared = prepare_record(record)
        if await self.client.exists(self.record_key(collection, record_id)):
            raise ConflictError(f"{collection}/{record_id} already exists")
        await self._write(collection, record_id, prepared)
        return record_id

    async def set(self, collection: str, record_id: str, record: Record) -> None:
        record_id, prepared = prepare_record(record, record_id)
        await self._write(collection, record_id, prepared)

    async def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> None:
        """Apply a patch atomically; concurrent writers to the record are retried"""
        try:
            updated = await self.client.update_json(
                self.record_key(collection, record_id),
                lambda current: apply_patch(current, patch)
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{collection}/{record_id} patch is not JSON serialisable: {e}") from e
        if updated is None:
            raise NotFoundError(f"{collection}/{record_id} not found")
        await self.client.publish(self.channel(collection), record_id)

    async def delete(self, collection: str, record_id: str) -> bool:
        deleted = await self.client.delete(self.record_key(collection, record_id))
        await self.client.srem(self.index_key(collection), record_id)
        if deleted:
            await self.client.publish(self.channel(collection), record_id)
        return deleted

    async def get_once(self, collection: str, record_id: str) -> Optional[Record]:
        return await self.client.get_json(self.record_key(collection, record_id))

    async def query(self, collection: str, query: Optional[Query] = None) -> List[Record]:
        ids = await self.client.smembers(self.index_key(collection))
        values = await self.client.mget([self.record_key(collection, record_id) for record_id in ids])

        records = []
        for record_id, value in zip(ids, values):
            if value is None:
                continue
            try:
                records.append(json.loads(value))
            except json.JSONDecodeError:
                logger.warning(f"Skipping unreadable record {collection}/{record_id}")
        return (query or Query()).apply(records)

    def watch(self, collection: str, query: Optional[Query], callback: SnapshotCallback) -> Subscription:
        subscription = RedisSubscription(self, collection, query or Query(), callback)
        subscription.add_cancel_callback(self._discard)
        self.subscriptions.append(subscription)
        return subscription.start()

    async def close(self) -> None:
        for subscription in list(self.subscriptions):
            subscription.cancel()
        await self.client.disconnect()

    async def _write(self, collection: str, record_id: str, record: Record):
        if not await self.client.set_json(self.record_key(collection, record_id), record):
            raise ValidationError(f"{collection}/{record_id} is not JSON serialisable")
        await self.client.sadd(self.index_key(collection), record_id)
        await self.client.publish(self.channel(collection), record_id)

    def _discard(self, subscription: Subscription):
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)
