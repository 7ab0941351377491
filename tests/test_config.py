from churchsync.core.config import Settings
from churchsync.core.redis_client import create_async_redis_client


def _settings(**overrides):
    return Settings(
        AIRTABLE_API_KEY="key",
        AIRTABLE_BASE_ID="appBase",
        _env_file=None,
        **overrides,
    )


def test_redis_disabled_when_unset_or_memory():
    assert _settings(REDIS_URL="").redis_url is None
    assert _settings(REDIS_URL="memory://").redis_url is None
    assert _settings(REDIS_URL="memory://").redis_enabled is False
    assert _settings(REDIS_URL="redis://localhost:6379/0").redis_url == "redis://localhost:6379/0"


def test_retry_policy_from_settings():
    policy = _settings(RETRY_MAX_RETRIES=5, RETRY_BASE_DELAY_MS=200).retry_policy

    assert policy.max_retries == 5
    assert policy.base_delay_ms == 200
    assert policy.max_delay_ms == 10000


def test_airtable_base_url():
    settings = _settings(AIRTABLE_API_URL="https://api.airtable.com/v0/")

    assert settings.airtable_base_url == "https://api.airtable.com/v0/appBase"


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("AIRTABLE_API_KEY", "env-key")
    monkeypatch.setenv("AIRTABLE_BASE_ID", "appEnv")
    monkeypatch.setenv("VOLUNTEER_CAPACITY_LIMIT", "7")

    settings = Settings(_env_file=None)

    assert settings.AIRTABLE_API_KEY == "env-key"
    assert settings.VOLUNTEER_CAPACITY_LIMIT == 7


def test_redis_client_none_when_disabled():
    assert create_async_redis_client(None) is None
    assert create_async_redis_client("") is None


def test_redis_client_uses_pool_limit():
    client = create_async_redis_client("redis://localhost:6379/0", max_connections=7)

    assert client is not None
    assert client.connection_pool.max_connections == 7
