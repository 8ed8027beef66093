import pytest

from chatsync.core.config import Settings
from chatsync.core.minio import MinioBlobStorage
from chatsync.schemas.result import SyncErrorKind
from chatsync.services.profile import ProfileService

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def service(user_repo, blob_storage, identity, events):
    return ProfileService(user_repo, blob_storage, identity, events)


async def test_upload_avatar_stores_url(service, user_repo, blob_storage, users):
    result = await service.upload_avatar(PNG, "me.png")

    assert result.ok
    assert result.value.startswith("https://cdn.chatsync.dev/avatars/alice/")
    assert result.value.endswith(".png")
    assert (await user_repo.get_by_id("alice")).photo_url == result.value
    assert list(blob_storage.objects.values()) == [PNG]


@pytest.mark.parametrize("data, filename", [
    (PNG, "notes.txt"),
    (b"", "empty.png"),
    (b"x" * (5 * 1024 * 1024 + 1), "huge.jpg"),
])
async def test_invalid_avatars_are_rejected(service, blob_storage, users, data, filename):
    result = await service.upload_avatar(data, filename)

    assert result.error.kind == SyncErrorKind.VALIDATION
    assert blob_storage.objects == {}


async def test_storage_failure_is_reported(service, blob_storage, user_repo, users, reported):
    blob_storage.fail = True

    result = await service.upload_avatar(PNG, "me.png")

    assert result.error.kind == SyncErrorKind.STORAGE
    assert reported[0].operation == "upload_avatar"
    assert (await user_repo.get_by_id("alice")).photo_url is None


async def test_remove_avatar(service, user_repo, users):
    await service.upload_avatar(PNG, "me.png")

    assert (await service.remove_avatar()).ok
    assert (await user_repo.get_by_id("alice")).photo_url is None


async def test_update_display_name(service, user_repo, users):
    assert (await service.update_display_name("  Alice M.  ")).value == "Alice M."
    assert (await user_repo.get_by_id("alice")).display_name == "Alice M."

    blank = await service.update_display_name("   ")
    assert blank.error.kind == SyncErrorKind.VALIDATION


async def test_presence(service, user_repo, users):
    before = (await user_repo.get_by_id("alice")).last_seen

    assert await service.set_presence(True) is True
    user = await user_repo.get_by_id("alice")
    assert user.is_online is True
    assert user.last_seen > before

    assert await service.set_presence(False) is True
    assert (await user_repo.get_by_id("alice")).is_online is False


async def test_presence_for_missing_user_is_skipped(service, identity, store):
    identity.sign_in("ghost")

    assert await service.set_presence(True) is False
    assert "users" not in store.collections


async def test_signed_out_profile_actions_are_no_ops(service, identity, users):
    identity.sign_out()

    assert (await service.upload_avatar(PNG, "me.png")).error.kind == SyncErrorKind.NOT_AUTHENTICATED
    assert await service.set_presence(True) is False


class FakeMinio:
    def __init__(self):
        self.buckets = set()
        self.objects = {}

    def bucket_exists(self, bucket):
        return bucket in self.buckets

    def make_bucket(self, bucket):
        self.buckets.add(bucket)

    def put_object(self, bucket, name, stream, length, content_type=None):
        self.objects[(bucket, name)] = (stream.read(length), content_type)

    def presigned_get_object(self, bucket, name, expires=None):
        return f"http://localhost:9000/{bucket}/{name}?expires={int(expires.total_seconds())}"

    def remove_object(self, bucket, name):
        del self.objects[(bucket, name)]


async def test_minio_storage_uploads_and_signs():
    storage = MinioBlobStorage.from_settings(Settings(MINIO_BUCKET_NAME="avatars", AVATAR_URL_EXPIRE_SECONDS=60))
    storage.client = FakeMinio()

    url = await storage.upload(PNG, "avatars/alice/a.png", "image/png")

    assert url == "http://localhost:9000/avatars/avatars/alice/a.png?expires=60"
    assert storage.client.objects[("avatars", "avatars/alice/a.png")] == (PNG, "image/png")
    assert await storage.delete("avatars/alice/a.png") is True
    assert storage.client.objects == {}
