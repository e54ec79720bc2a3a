"""Tests for environment-driven settings."""

from datetime import timedelta

from notion_access.services.resources import ResourceType
from notion_access.settings import Settings, load_settings


def test_defaults() -> None:
    """Test defaults match the documented configuration."""
    settings = load_settings({})

    assert settings.api_base_url == "https://api.notion.com/v1"
    assert settings.cache_enabled is True
    assert settings.disk_cache_url.startswith("sqlite+aiosqlite:///")
    assert settings.disk_cache_url.endswith("cache.db")

    config = settings.to_client_config()
    assert config.cache.default_ttl == timedelta(minutes=5)
    assert config.cache.max_size == 1000
    assert config.cache.ttl_by_type[ResourceType.USER] == timedelta(hours=1)
    assert config.retry.max_retries == 3
    assert config.circuit_breaker.failure_threshold == 5
    assert config.circuit_breaker.reset_timeout == timedelta(minutes=1)
    assert config.use_dedup is True
    assert config.verbose is False


def test_environment_overrides() -> None:
    """Test aliased environment variables are parsed and converted."""
    settings = load_settings(
        {
            "NOTION_TOKEN": "secret_abc",
            "NOTION_CLI_CACHE_ENABLED": "false",
            "NOTION_CLI_CACHE_TTL": "1000",
            "NOTION_CLI_CACHE_MAX_SIZE": "50",
            "NOTION_CLI_CACHE_PAGE_TTL": "2500",
            "NOTION_CLI_DEDUP_ENABLED": "0",
            "NOTION_CLI_MAX_RETRIES": "5",
            "NOTION_CLI_BASE_DELAY": "200",
            "NOTION_CLI_JITTER_FACTOR": "0.25",
            "NOTION_CLI_CB_FAILURE_THRESHOLD": "3",
            "NOTION_CLI_CB_TIMEOUT": "5000",
            "UNRELATED_VARIABLE": "ignored",
        }
    )

    assert settings.notion_token == "secret_abc"

    config = settings.to_client_config()
    assert config.cache.enabled is False
    assert config.cache.default_ttl == timedelta(seconds=1)
    assert config.cache.max_size == 50
    assert config.cache.ttl_by_type[ResourceType.PAGE] == timedelta(milliseconds=2500)
    assert config.use_dedup is False
    assert config.retry.max_retries == 5
    assert config.retry.base_delay_ms == 200
    assert config.retry.jitter_factor == 0.25
    assert config.circuit_breaker.failure_threshold == 3
    assert config.circuit_breaker.reset_timeout == timedelta(seconds=5)


def test_any_debug_flag_enables_verbose() -> None:
    """Test each diagnostic flag turns on verbose output."""
    for name in ("NOTION_CLI_VERBOSE", "NOTION_CLI_DEBUG", "DEBUG"):
        assert load_settings({name: "true"}).to_client_config().verbose is True


def test_load_settings_reads_process_environment(monkeypatch) -> None:
    """Test load_settings falls back to os.environ."""
    monkeypatch.setenv("NOTION_CLI_CACHE_MAX_SIZE", "42")

    settings = load_settings()

    assert isinstance(settings, Settings)
    assert settings.cache_max_size == 42
