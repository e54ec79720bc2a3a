"""Tests for the cache info entry point."""

import json

import pytest

import main
from notion_access.settings import load_settings


@pytest.mark.asyncio
async def test_main_prints_cache_info(monkeypatch, capsys) -> None:
    """Test main prints the health report as JSON."""
    monkeypatch.setattr(
        main,
        "load_settings",
        lambda: load_settings({"NOTION_CLI_DISK_CACHE_ENABLED": "false"}),
    )

    await main.main()

    info = json.loads(capsys.readouterr().out)
    assert info["cache"]["enabled"] is True
    assert info["cache"]["persistent"] is False
    assert info["deduplicator"]["pending"] == 0
    assert info["open_circuits"] == []
