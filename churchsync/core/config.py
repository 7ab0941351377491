"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from churchsync.core.rate_limit import RetryPolicy

REDIS_DISABLED_URL = "memory://"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Record store (Airtable)
    AIRTABLE_API_KEY: str
    AIRTABLE_BASE_ID: str
    AIRTABLE_API_URL: str = "https://api.airtable.com/v0"
    AIRTABLE_RATE_LIMIT_PER_SECOND: float = 5.0
    AIRTABLE_TIMEOUT_SECONDS: float = 10.0

    # Retry/backoff for record store calls (milliseconds)
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_MS: int = 1000
    RETRY_MAX_DELAY_MS: int = 10000
    RETRY_JITTER_MS: int = 1000

    # Follow-up scheduling
    DEFAULT_FOLLOW_UP_DUE_DAYS: int = 3
    VOLUNTEER_CAPACITY_LIMIT: int = 20

    # Phone normalization (calling code applied to national "0..." numbers)
    DEFAULT_COUNTRY_CODE: str = "233"

    # Redis (cache + identity locks). Unset or "memory://" disables Redis.
    REDIS_URL: str = ""
    REDIS_MAX_CONNECTIONS: int = 20

    # Cache
    CACHE_KEY_PREFIX: str = "churchsync:cache:"
    CACHE_DEFAULT_TTL_SECONDS: int = 900  # hard expiry
    CACHE_STALE_AFTER_SECONDS: int = 900  # soft freshness window

    # Identity creation lock
    IDENTITY_LOCK_TIMEOUT_SECONDS: float = 30.0
    IDENTITY_LOCK_WAIT_SECONDS: float = 10.0

    @property
    def redis_url(self) -> str | None:
        """Return the Redis URL, or None when Redis is disabled."""
        url = self.REDIS_URL.strip()
        if not url or url.lower() == REDIS_DISABLED_URL:
            return None
        return url

    @property
    def redis_enabled(self) -> bool:
        return self.redis_url is not None

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.RETRY_MAX_RETRIES,
            base_delay_ms=self.RETRY_BASE_DELAY_MS,
            max_delay_ms=self.RETRY_MAX_DELAY_MS,
            jitter_ms=self.RETRY_JITTER_MS,
        )

    @property
    def airtable_base_url(self) -> str:
        return f"{self.AIRTABLE_API_URL.rstrip('/')}/{self.AIRTABLE_BASE_ID}"
