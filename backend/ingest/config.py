import logging
from typing import List

from pydantic_settings import BaseSettings

_logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Jolt Ingest"
    APP_VERSION: str = "3.0.0"

    # Shared key-value store (rate limits, robots cache). Empty = disabled.
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # Identity: generic and honest, no spoofing
    USER_AGENT: str = "Mozilla/5.0 (compatible; ReadabilityBot/1.0)"
    ROBOTS_BOT_TOKEN: str = "readabilitybot"

    # Size limits (bytes)
    MAX_HTML_SIZE: int = 5 * 1024 * 1024
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    MAX_ROBOTS_SIZE: int = 512 * 1024

    # Timeouts (ms)
    FETCH_TIMEOUT_MS: int = 10000
    ROBOTS_TIMEOUT_MS: int = 5000
    SPA_FETCH_TIMEOUT_MS: int = 3000

    # Redirects
    MAX_REDIRECTS: int = 3

    # Rate limiting
    RATE_LIMIT_PER_CLIENT: int = 100  # per hour
    RATE_LIMIT_PER_DOMAIN: int = 60  # per minute

    # Robots.txt cache
    ROBOTS_CACHE_TTL_SECONDS: int = 24 * 60 * 60

    # Encoding
    REPLACEMENT_CHAR_THRESHOLD: float = 0.05

    # SPA bypass: extra domains on top of the built-in denylist
    SPA_EXTRA_DOMAINS: List[str] = []

    # Parse-result cache freshness (record consumers honour this window)
    CACHE_TTL_SECONDS: int = 24 * 60 * 60

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    def model_post_init(self, __context) -> None:
        if self.MAX_REDIRECTS < 0:
            _logger.warning("MAX_REDIRECTS < 0, clamping to 0")
            object.__setattr__(self, "MAX_REDIRECTS", 0)
        if not self.REDIS_URL:
            _logger.warning(
                "REDIS_URL not set: rate limiting disabled and robots.txt "
                "fetched on every request."
            )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
