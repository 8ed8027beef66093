from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Application
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Document store
    STORE_BACKEND: str = "memory"  # memory, redis
    STORE_KEY_PREFIX: str = "chatsync"

    # Redis
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # MinIO
    MINIO_ROOT_USER: str = "minioadmin"
    MINIO_ROOT_PASSWORD: str = "minioadmin"
    MINIO_BUCKET_NAME: str = "chatsync-avatars"
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_SECURE: bool = False
    AVATAR_URL_EXPIRE_SECONDS: int = 7 * 24 * 3600

    # JWT
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Conversation list
    SEARCH_DEBOUNCE_MS: int = 300
    RECENT_WINDOW_DAYS: int = 3
    ACTIVE_WINDOW_DAYS: int = 7

    # Messages
    DELETED_MESSAGE_PLACEHOLDER: str = "This message was deleted"

    # Avatar upload
    MAX_AVATAR_SIZE_MB: int = 5
    ALLOWED_AVATAR_EXTENSIONS: Union[List[str], str] = [".jpg", ".jpeg", ".png", ".gif", ".webp"]

    @field_validator("ALLOWED_AVATAR_EXTENSIONS", mode="before")
    @classmethod
    def assemble_allowed_extensions(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and v.startswith("["):
            return json.loads(v)
        elif isinstance(v, str):
            return [i.strip() for i in v.split(",")]
        return v

    @property
    def MAX_AVATAR_SIZE_BYTES(self) -> int:
        return self.MAX_AVATAR_SIZE_MB * 1024 * 1024

    @property
    def SEARCH_DEBOUNCE_SECONDS(self) -> float:
        return self.SEARCH_DEBOUNCE_MS / 1000


settings = Settings()
