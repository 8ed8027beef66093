import logging
import mimetypes
import os
import uuid

from chatsync.core.config import settings
from chatsync.core.events import EventBus
from chatsync.core.identity import IdentityProvider
from chatsync.core.minio import BlobStorage
from chatsync.repositories.user import UserRepository
from chatsync.schemas.result import OperationResult, SyncErrorKind
from chatsync.schemas.user import UserUpdate
from chatsync.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(
        self,
        repo: UserRepository,
        storage: BlobStorage,
        identity: IdentityProvider,
        events: EventBus
    ):
        self.repo = repo
        self.storage = storage
        self.identity = identity
        self.events = events

    def _generate_object_name(self, filename: str, user_id: str) -> str:
        """Generate unique object name for an avatar"""
        file_extension = os.path.splitext(filename)[1].lower()
        return f"avatars/{user_id}/{uuid.uuid4()}{file_extension}"

    def _validate_avatar(self, data: bytes, filename: str):
        if not data:
            raise ValidationError("Avatar file is empty")
        if len(data) > settings.MAX_AVATAR_SIZE_BYTES:
            raise ValidationError(f"Avatar exceeds {settings.MAX_AVATAR_SIZE_MB} MB")
        file_extension = os.path.splitext(filename)[1].lower()
        if file_extension not in settings.ALLOWED_AVATAR_EXTENSIONS:
            raise ValidationError(f"Avatar type {file_extension or '(none)'} is not allowed")

    async def update_display_name(self, display_name: str) -> OperationResult:
        me = self.identity.current_user_id
        if me is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "update_display_name")

        async def call():
            name = display_name.strip()
            if not name:
                raise ValidationError("Display name cannot be empty")
            await self.repo.update(me, UserUpdate(display_name=name))
            return name

        return await self.events.guard("update_display_name", call)

    async def upload_avatar(self, data: bytes, filename: str) -> OperationResult:
        """Upload a new avatar and store its URL on the user"""
        me = self.identity.current_user_id
        if me is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "upload_avatar")

        async def call() -> str:
            self._validate_avatar(data, filename)
            content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
            url = await self.storage.upload(data, self._generate_object_name(filename, me), content_type)
            await self.repo.update(me, UserUpdate(photo_url=url))
            logger.info(f"Avatar updated for {me}")
            return url

        return await self.events.guard("upload_avatar", call)

    async def remove_avatar(self) -> OperationResult:
        me = self.identity.current_user_id
        if me is None:
            return OperationResult.failure(SyncErrorKind.NOT_AUTHENTICATED, "No signed in user", "remove_avatar")
        return await self.events.guard("remove_avatar", lambda: self.repo.update(me, UserUpdate(photo_url=None)))

    async def set_presence(self, online: bool) -> bool:
        """Update the online flag; a failure is reported and ignored"""
        me = self.identity.current_user_id
        if me is None:
            return False
        result = await self.events.guard("set_presence", lambda: self.repo.update_online_status(me, online))
        return bool(result.ok and result.value)
