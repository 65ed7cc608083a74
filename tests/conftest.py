"""Shared fixtures for the test suite."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from grafana2matrix.config import DEFAULT_CONFIG_FILE, clear_settings_cache, set_config_file
from grafana2matrix.storage.store import StateStore


@pytest.fixture
def store(tmp_path: Path) -> Iterator[StateStore]:
    """State store backed by a throwaway SQLite file."""
    state = StateStore.from_path(tmp_path / "alerts.db")
    yield state
    state.close()


CONFIG_ENV_VARS = (
    "MATRIX_HOMESERVER_URL",
    "MATRIX_ACCESS_TOKEN",
    "MATRIX_ROOM_ID",
    "GRAFANA_URL",
    "GRAFANA_API_KEY",
    "SUMMARY_SCHEDULE_CRIT",
    "SUMMARY_SCHEDULE_WARN",
    "SUMMARY_SCHEDULE_SKIP_EMPTY",
    "MENTION_CONFIG_PATH",
    "DB_FILE",
    "PORT",
    "LOG_LEVEL",
    "TICK_INTERVAL_SECONDS",
)


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Run with no bridge environment, no .env and a config file path under tmp_path."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    config_file = tmp_path / "config.json"
    set_config_file(config_file)
    clear_settings_cache()
    yield config_file
    clear_settings_cache()
    set_config_file(DEFAULT_CONFIG_FILE)
