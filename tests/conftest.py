from datetime import datetime, timezone
from typing import Dict, List

import pytest

from chatsync.client import ChatSyncClient
from chatsync.core.config import Settings
from chatsync.core.events import EventBus, SyncErrorReported
from chatsync.core.identity import IdentityProvider
from chatsync.core.minio import BlobStorage
from chatsync.core.store import MemoryDocumentStore
from chatsync.repositories.chat import ChatRepository
from chatsync.repositories.friendship import FriendshipRepository
from chatsync.repositories.notification import NotificationRepository
from chatsync.repositories.user import UserRepository
from chatsync.schemas.user import User
from chatsync.services.user_cache import UserCache
from chatsync.utils.exceptions import StorageError

JOINED = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)

SEED_USERS = [
    ("alice", "alice@chatsync.dev", "Alice Martin"),
    ("bob", "bob@chatsync.dev", "Bob Stone"),
    ("carol", "carol@chatsync.dev", "Carol Diaz"),
    ("dave", "dave@chatsync.dev", "Dave Okafor"),
]


class FakeBlobStorage(BlobStorage):
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.fail = False

    async def upload(self, data: bytes, object_name: str, content_type: str = "application/octet-stream") -> str:
        if self.fail:
            raise StorageError("bucket unavailable")
        self.objects[object_name] = data
        return f"https://cdn.chatsync.dev/{object_name}"

    async def delete(self, object_name: str) -> bool:
        return self.objects.pop(object_name, None) is not None


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def settle(store):
    """Let every live query deliver its queued snapshots"""
    async def _settle():
        await store.flush()
        await store.flush()
    return _settle


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def reported(events) -> List:
    errors = []
    events.subscribe(SyncErrorReported, lambda event: errors.append(event.error))
    return errors


@pytest.fixture
def identity():
    return IdentityProvider("alice")


@pytest.fixture
def user_repo(store):
    return UserRepository(store)


@pytest.fixture
def notification_repo(store):
    return NotificationRepository(store)


@pytest.fixture
def friendship_repo(store, notification_repo):
    return FriendshipRepository(store, notification_repo)


@pytest.fixture
def chat_repo(store):
    return ChatRepository(store)


@pytest.fixture
async def users(user_repo) -> Dict[str, User]:
    seeded = {}
    for user_id, email, name in SEED_USERS:
        user = User(id=user_id, email=email, display_name=name, last_seen=JOINED, created_at=JOINED)
        seeded[user_id] = await user_repo.create(user)
    return seeded


@pytest.fixture
async def user_cache(user_repo, users, settle):
    cache = UserCache(user_repo)
    cache.start()
    await settle()
    yield cache
    cache.stop()


@pytest.fixture
def blob_storage():
    return FakeBlobStorage()


@pytest.fixture
async def client(store, identity, events, blob_storage, users, settle):
    sync_client = ChatSyncClient(
        store=store,
        identity=identity,
        storage=blob_storage,
        events=events,
        settings=Settings(SEARCH_DEBOUNCE_MS=20)
    )
    sync_client.start()
    await settle()
    yield sync_client
    await sync_client.close()
