import asyncio
import copy
import inspect
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from chatsync.utils.exceptions import ConflictError, NotFoundError, ValidationError
from chatsync.utils.time import to_millis

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Snapshot = List[Record]
SnapshotCallback = Callable[[Snapshot], Union[None, Awaitable[None]]]

QUERY_OPERATORS = ("==", "!=", "in", "array_contains")
_MISSING = object()


class Increment:
    """Patch value that adds to the stored number instead of replacing it"""

    def __init__(self, amount: int = 1):
        self.amount = amount

    def __repr__(self):
        return f"Increment({self.amount})"


def encode_value(value: Any) -> Any:
    """Convert a value into its stored JSON-compatible form"""
    if isinstance(value, Increment):
        return value
    if isinstance(value, datetime):
        return to_millis(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def get_path(record: Record, path: str) -> Any:
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def apply_patch(record: Record, patch: Dict[str, Any]) -> Record:
    """Return a copy of record with a patch applied.

    Keys may be dotted paths into nested maps ("unread_count.user-1"); missing
    intermediate maps are created. Increment values add to the current number,
    treating a missing value as zero.
    """
    updated = copy.deepcopy(record)
    for path, value in patch.items():
        if path == "id":
            raise ValidationError("Record id cannot be patched")
        parts = path.split(".")
        target = updated
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child

        value = encode_value(value)
        if isinstance(value, Increment):
            current = target.get(parts[-1]) or 0
            target[parts[-1]] = current + value.amount
        else:
            target[parts[-1]] = value
    return updated


class Query:
    """Filter, order and limit applied to a collection"""

    def __init__(self):
        self.filters: List[Tuple[str, str, Any]] = []
        self.order_field: Optional[str] = None
        self.descending: bool = False
        self.max_results: Optional[int] = None

    def _copy(self) -> "Query":
        query = Query()
        query.filters = list(self.filters)
        query.order_field = self.order_field
        query.descending = self.descending
        query.max_results = self.max_results
        return query

    def where(self, field: str, op: str, value: Any) -> "Query":
        if op not in QUERY_OPERATORS:
            raise ValidationError(f"Unsupported query operator: {op}")
        query = self._copy()
        query.filters.append((field, op, encode_value(value)))
        return query

    def order_by(self, field: str, descending: bool = False) -> "Query":
        query = self._copy()
        query.order_field = field
        query.descending = descending
        return query

    def limit(self, count: int) -> "Query":
        query = self._copy()
        query.max_results = count
        return query

    def matches(self, record: Record) -> bool:
        for field, op, value in self.filters:
            current = get_path(record, field)
            if current is _MISSING:
                return False
            if op == "==" and current != value:
                return False
            if op == "!=" and current == value:
                return False
            if op == "in" and current not in value:
                return False
            if op == "array_contains" and (not isinstance(current, list) or value not in current):
                return False
        return True

    def apply(self, records: List[Record]) -> List[Record]:
        results = [record for record in records if self.matches(record)]

        if self.order_field:
            present = []
            absent = []
            for record in results:
                value = get_path(record, self.order_field)
                if value is _MISSING or value is None:
                    absent.append(record)
                else:
                    present.append(record)
            present.sort(key=lambda r: get_path(r, self.order_field), reverse=self.descending)
            results = present + absent

        if self.max_results is not None:
            results = results[:self.max_results]
        return results

    def __repr__(self):
        return f"Query(filters={self.filters}, order_by={self.order_field}, descending={self.descending})"


class Subscription:
    """Live query handle. Snapshots are delivered in order on one task; only the
    newest queued snapshot is delivered when several pile up."""

    def __init__(self, collection: str, query: Query, callback: SnapshotCallback):
        self.collection = collection
        self.query = query
        self.callback = callback
        self.queue: asyncio.Queue = asyncio.Queue()
        self.cancelled = False
        self._task: Optional[asyncio.Task] = None
        self._on_cancel: List[Callable[["Subscription"], None]] = []

    def start(self) -> "Subscription":
        self._task = asyncio.get_running_loop().create_task(self._deliver_loop())
        return self

    def push(self, snapshot: Snapshot):
        if not self.cancelled:
            self.queue.put_nowait(snapshot)

    def add_cancel_callback(self, callback: Callable[["Subscription"], None]):
        self._on_cancel.append(callback)

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        # Release anyone waiting on queued snapshots that will never be delivered
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()
        for callback in self._on_cancel:
            callback(self)
        logger.debug(f"Subscription on {self.collection} cancelled")

    async def _deliver_loop(self):
        while not self.cancelled:
            snapshot = await self.queue.get()
            skipped = 0
            while not self.queue.empty():
                snapshot = self.queue.get_nowait()
                skipped += 1
            try:
                result = self.callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Snapshot callback on {self.collection} failed: {e}")
            finally:
                for _ in range(skipped + 1):
                    self.queue.task_done()


class DocumentStore(ABC):
    """Document store with live queries.

    Records are plain JSON-compatible dicts carrying their own "id". Every
    method may raise TransientNetworkError, NotFoundError or PermissionDeniedError.
    """

    @abstractmethod
    async def create(self, collection: str, record: Record) -> str:
        ...

    @abstractmethod
    async def set(self, collection: str, record_id: str, record: Record) -> None:
        ...

    @abstractmethod
    async def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> bool:
        ...

    @abstractmethod
    async def get_once(self, collection: str, record_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def query(self, collection: str, query: Optional[Query] = None) -> List[Record]:
        ...

    @abstractmethod
    def watch(self, collection: str, query: Optional[Query], callback: SnapshotCallback) -> Subscription:
        """Start a live query. Must be called from a running event loop."""
        ...

    async def close(self) -> None:
        pass


def prepare_record(record: Record, record_id: Optional[str] = None) -> Tuple[str, Record]:
    prepared = encode_value(dict(record))
    if record_id is None:
        record_id = prepared.get("id") or str(uuid.uuid4())
    prepared["id"] = record_id
    return record_id, prepared


class MemoryDocumentStore(DocumentStore):
    """In-process document store. Live queries are fed from asyncio queues."""

    def __init__(self):
        # collection -> record id -> record
        self.collections: Dict[str, Dict[str, Record]] = {}
        self.subscriptions: List[Subscription] = []

    async def create(self, collection: str, record: Record) -> str:
        record_id, prepared = prepare_record(record)
        records = self.collections.setdefault(collection, {})
        if record_id in records:
            raise ConflictError(f"{collection}/{record_id} already exists")
        records[record_id] = prepared
        self._notify(collection)
        return record_id

    async def set(self, collection: str, record_id: str, record: Record) -> None:
        record_id, prepared = prepare_record(record, record_id)
        self.collections.setdefault(collection, {})[record_id] = prepared
        self._notify(collection)

    async def update(self, collection: str, record_id: str, patch: Dict[str, Any]) -> None:
        records = self.collections.get(collection, {})
        if record_id not in records:
            raise NotFoundError(f"{collection}/{record_id} not found")
        records[record_id] = apply_patch(records[record_id], patch)
        self._notify(collection)

    async def delete(self, collection: str, record_id: str) -> bool:
        records = self.collections.get(collection, {})
        if record_id not in records:
            return False
        del records[record_id]
        self._notify(collection)
        return True

    async def get_once(self, collection: str, record_id: str) -> Optional[Record]:
        record = self.collections.get(collection, {}).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def query(self, collection: str, query: Optional[Query] = None) -> List[Record]:
        return self._snapshot(collection, query or Query())

    def watch(self, collection: str, query: Optional[Query], callback: SnapshotCallback) -> Subscription:
        subscription = Subscription(collection, query or Query(), callback)
        subscription.add_cancel_callback(self._discard)
        self.subscriptions.append(subscription)
        subscription.push(self._snapshot(collection, subscription.query))
        logger.debug(f"Watching {collection} with {subscription.query}")
        return subscription.start()

    async def flush(self, rounds: int = 5) -> None:
        """Wait until queued snapshots, and the writes they trigger, are delivered"""
        for _ in range(rounds):
            await asyncio.gather(*(s.queue.join() for s in list(self.subscriptions)))
            await asyncio.sleep(0)

    async def close(self) -> None:
        for subscription in list(self.subscriptions):
            subscription.cancel()

    def _snapshot(self, collection: str, query: Query) -> Snapshot:
        records = list(self.collections.get(collection, {}).values())
        return copy.deepcopy(query.apply(records))

    def _notify(self, collection: str):
        for subscription in list(self.subscriptions):
            if subscription.collection == collection:
                subscription.push(self._snapshot(collection, subscription.query))

    def _discard(self, subscription: Subscription):
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)


def create_store(settings) -> DocumentStore:
    """Build the document store selected by STORE_BACKEND"""
    if settings.STORE_BACKEND == "memory":
        return MemoryDocumentStore()
    if settings.STORE_BACKEND == "redis":
        from chatsync.core.redis import RedisClient
        from chatsync.core.redis_store import RedisDocumentStore
        return RedisDocumentStore(RedisClient(settings.REDIS_URL), prefix=settings.STORE_KEY_PREFIX)
    raise ValidationError(f"Unknown store backend: {settings.STORE_BACKEND}")
