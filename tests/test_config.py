from chatsync.core.config import Settings


def test_defaults_load_without_environment():
    config = Settings()

    assert config.STORE_BACKEND == "memory"
    assert config.SEARCH_DEBOUNCE_SECONDS == 0.3
    assert config.MAX_AVATAR_SIZE_BYTES == 5 * 1024 * 1024
    assert config.REDIS_URL == "redis://localhost:6379/0"


def test_allowed_extensions_accept_comma_list_and_json():
    assert Settings(ALLOWED_AVATAR_EXTENSIONS=".png, .jpg").ALLOWED_AVATAR_EXTENSIONS == [".png", ".jpg"]
    assert Settings(ALLOWED_AVATAR_EXTENSIONS='[".gif"]').ALLOWED_AVATAR_EXTENSIONS == [".gif"]


def test_redis_url_includes_password():
    config = Settings(REDIS_PASSWORD="s3cret", REDIS_DB=2)

    assert config.REDIS_URL == "redis://:s3cret@localhost:6379/2"
