import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from notion_access.services.cache import CacheConfig
from notion_access.services.circuit_breaker import CircuitBreakerConfig
from notion_access.services.client import ClientConfig
from notion_access.services.resources import ResourceType
from notion_access.services.retry import RetryConfig


def _default_disk_cache_url() -> str:
    return f"sqlite+aiosqlite:///{Path.home() / '.notion-cli' / 'cache.db'}"


class Settings(BaseModel):
    # API Configuration
    notion_token: str = Field(default="", alias="NOTION_TOKEN")
    api_base_url: str = Field(
        default="https://api.notion.com/v1", alias="NOTION_API_BASE_URL"
    )
    notion_version: str = Field(default="2022-06-28", alias="NOTION_VERSION")
    request_timeout_ms: int = Field(default=30000, alias="NOTION_CLI_REQUEST_TIMEOUT")

    # Cache Configuration (durations in ms)
    cache_enabled: bool = Field(default=True, alias="NOTION_CLI_CACHE_ENABLED")
    cache_ttl_ms: int = Field(default=300000, alias="NOTION_CLI_CACHE_TTL")
    cache_max_size: int = Field(default=1000, alias="NOTION_CLI_CACHE_MAX_SIZE")
    cache_ds_ttl_ms: int = Field(default=600000, alias="NOTION_CLI_CACHE_DS_TTL")
    cache_db_ttl_ms: int = Field(default=600000, alias="NOTION_CLI_CACHE_DB_TTL")
    cache_user_ttl_ms: int = Field(default=3600000, alias="NOTION_CLI_CACHE_USER_TTL")
    cache_page_ttl_ms: int = Field(default=60000, alias="NOTION_CLI_CACHE_PAGE_TTL")
    cache_block_ttl_ms: int = Field(default=30000, alias="NOTION_CLI_CACHE_BLOCK_TTL")

    # Persistent Cache Configuration
    disk_cache_enabled: bool = Field(default=True, alias="NOTION_CLI_DISK_CACHE_ENABLED")
    disk_cache_url: str = Field(
        default_factory=_default_disk_cache_url, alias="NOTION_CLI_DISK_CACHE_URL"
    )
    disk_cache_max_size: int = Field(
        default=100 * 1024 * 1024, alias="NOTION_CLI_DISK_CACHE_MAX_SIZE"
    )

    # Deduplication
    dedup_enabled: bool = Field(default=True, alias="NOTION_CLI_DEDUP_ENABLED")

    # Retry Configuration (delays in ms)
    max_retries: int = Field(default=3, alias="NOTION_CLI_MAX_RETRIES")
    base_delay_ms: int = Field(default=1000, alias="NOTION_CLI_BASE_DELAY")
    max_delay_ms: int = Field(default=30000, alias="NOTION_CLI_MAX_DELAY")
    exponential_base: float = Field(default=2.0, alias="NOTION_CLI_EXP_BASE")
    jitter_factor: float = Field(default=0.1, alias="NOTION_CLI_JITTER_FACTOR")

    # Circuit Breaker Configuration
    cb_failure_threshold: int = Field(default=5, alias="NOTION_CLI_CB_FAILURE_THRESHOLD")
    cb_success_threshold: int = Field(default=2, alias="NOTION_CLI_CB_SUCCESS_THRESHOLD")
    cb_timeout_ms: int = Field(default=60000, alias="NOTION_CLI_CB_TIMEOUT")

    # Diagnostics
    verbose: bool = Field(default=False, alias="NOTION_CLI_VERBOSE")
    cli_debug: bool = Field(default=False, alias="NOTION_CLI_DEBUG")
    debug: bool = Field(default=False, alias="DEBUG")

    def to_client_config(self) -> ClientConfig:
        """Build the explicit config struct handed to the service layer."""
        return ClientConfig(
            cache=CacheConfig(
                enabled=self.cache_enabled,
                default_ttl=timedelta(milliseconds=self.cache_ttl_ms),
                max_size=self.cache_max_size,
                ttl_by_type={
                    ResourceType.DATA_SOURCE: timedelta(milliseconds=self.cache_ds_ttl_ms),
                    ResourceType.DATABASE: timedelta(milliseconds=self.cache_db_ttl_ms),
                    ResourceType.USER: timedelta(milliseconds=self.cache_user_ttl_ms),
                    ResourceType.PAGE: timedelta(milliseconds=self.cache_page_ttl_ms),
                    ResourceType.BLOCK: timedelta(milliseconds=self.cache_block_ttl_ms),
                },
            ),
            retry=RetryConfig(
                max_retries=self.max_retries,
                base_delay_ms=self.base_delay_ms,
                max_delay_ms=self.max_delay_ms,
                exponential_base=self.exponential_base,
                jitter_factor=self.jitter_factor,
            ),
            circuit_breaker=CircuitBreakerConfig(
                failure_threshold=self.cb_failure_threshold,
                success_threshold=self.cb_success_threshold,
                reset_timeout=timedelta(milliseconds=self.cb_timeout_ms),
            ),
            use_dedup=self.dedup_enabled,
            use_persistent_cache=self.disk_cache_enabled,
            verbose=self.verbose or self.cli_debug or self.debug,
        )


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Read settings once from the environment (and a .env file)."""
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)
    return Settings.model_validate(environ)
