"""Tests for the config module."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from pomoflow.config import (
    current_identity,
    get_db_path,
    load_config,
    save_config,
    set_db_path,
    set_remote,
    set_tick_source,
    sign_in,
    sign_out,
)
from pomoflow.models import AppConfig, TickSourceKind


def _patch_config_paths(tmp_path: Path):
    """Return context managers that redirect config and data dirs to tmp_path."""
    cfg_dir = tmp_path / "config"
    cfg_file = cfg_dir / "config.json"
    return (
        patch("pomoflow.config._CONFIG_DIR", cfg_dir),
        patch("pomoflow.config._CONFIG_FILE", cfg_file),
        patch("pomoflow.config._DB_DIR", tmp_path / "data"),
    )


class TestLoadSaveConfig:
    def test_load_default_when_missing(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            config = load_config()
            assert config.db_path is None
            assert config.user_id is None
            assert config.tick_source == TickSourceKind.THREAD

    def test_save_and_load_roundtrip(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            cfg = AppConfig(user_id="alice", tick_source=TickSourceKind.POLL, sound_enabled=False)
            path = save_config(cfg)
            assert path.exists()

            loaded = load_config()
            assert loaded.user_id == "alice"
            assert loaded.tick_source == TickSourceKind.POLL
            assert not loaded.sound_enabled

    def test_load_handles_corrupt_file(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            cfg_dir = tmp_path / "config"
            cfg_dir.mkdir(parents=True, exist_ok=True)
            (cfg_dir / "config.json").write_text("not valid json{{{")
            config = load_config()
            assert config.user_id is None  # falls back to default

    def test_load_handles_invalid_values(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            cfg_dir = tmp_path / "config"
            cfg_dir.mkdir(parents=True, exist_ok=True)
            (cfg_dir / "config.json").write_text('{"tick_source": "sundial"}')
            assert load_config().tick_source == TickSourceKind.THREAD


class TestDbPath:
    def test_default_path(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            path = get_db_path()
            assert path == tmp_path / "data" / "pomoflow.db"

    def test_set_db_path(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            custom = tmp_path / "custom" / "my.db"
            cfg = set_db_path(str(custom))
            assert cfg.db_path == str(custom)
            assert get_db_path() == custom

    def test_set_db_path_directory(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            d = tmp_path / "somedir"
            d.mkdir()
            cfg = set_db_path(str(d))
            assert cfg.db_path is not None
            assert cfg.db_path.endswith("pomoflow.db")


class TestIdentity:
    def test_anonymous_by_default(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            assert current_identity() is None

    def test_sign_in_and_out(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            sign_in("  alice ")
            assert current_identity().id == "alice"
            set_remote("http://api.test", "token")
            sign_out()
            config = load_config()
            assert current_identity(config) is None
            assert config.api_token is None
            assert config.api_url == "http://api.test"


class TestRemoteAndTicking:
    def test_set_remote_strips_trailing_slash(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            cfg = set_remote("http://api.test/", "tok")
            assert cfg.api_url == "http://api.test"
            assert cfg.api_token == "tok"

    def test_clearing_remote_keeps_token_unless_given(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            set_remote("http://api.test", "tok")
            cfg = set_remote(None)
            assert cfg.api_url is None
            assert cfg.api_token == "tok"

    def test_set_tick_source(self, tmp_path: Path) -> None:
        p1, p2, p3 = _patch_config_paths(tmp_path)
        with p1, p2, p3:
            set_tick_source(TickSourceKind.POLL)
            assert load_config().tick_source == TickSourceKind.POLL
