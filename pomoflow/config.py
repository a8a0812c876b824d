"""Application configuration management."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from pomoflow.models import AppConfig, Identity, TickSourceKind

_CONFIG_DIR = Path.home() / ".config" / "pomoflow"
_DB_DIR = Path.home() / ".local" / "share" / "pomoflow"

_CONFIG_FILE = _CONFIG_DIR / "config.json"
_LOCAL_STORE_FILE = _CONFIG_DIR / "local.json"


def load_config() -> AppConfig:
    """Load config from disk, returning defaults if none exists."""
    if _CONFIG_FILE.exists():
        try:
            data = json.loads(_CONFIG_FILE.read_text())
            return AppConfig(**data)
        except (json.JSONDecodeError, TypeError, ValidationError):
            pass
    return AppConfig()


def save_config(config: AppConfig) -> Path:
    """Write config to disk. Returns the config file path."""
    _CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    _CONFIG_FILE.write_text(config.model_dump_json(indent=2))
    return _CONFIG_FILE


def get_db_path() -> Path:
    """Resolve the database path from config (or default)."""
    config = load_config()
    if config.db_path is not None:
        p = Path(config.db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    # Default
    _DB_DIR.mkdir(parents=True, exist_ok=True)
    return _DB_DIR / "pomoflow.db"


def set_db_path(path: str) -> AppConfig:
    """Set a custom database path and save config."""
    resolved = Path(path).expanduser().resolve()
    # Ensure it ends with a filename
    if resolved.is_dir():
        resolved = resolved / "pomoflow.db"
    resolved.parent.mkdir(parents=True, exist_ok=True)
    config = load_config()
    config.db_path = str(resolved)
    save_config(config)
    return config


def get_local_store_path() -> Path:
    """Where anonymous settings and progress are kept."""
    return _LOCAL_STORE_FILE


def current_identity(config: Optional[AppConfig] = None) -> Optional[Identity]:
    """Return the signed-in identity, or None for anonymous use."""
    config = config or load_config()
    if not config.user_id:
        return None
    return Identity(id=config.user_id)


def sign_in(user_id: str) -> AppConfig:
    config = load_config()
    config.user_id = user_id.strip() or None
    save_config(config)
    return config


def sign_out() -> AppConfig:
    config = load_config()
    config.user_id = None
    config.api_token = None
    save_config(config)
    return config


def set_remote(api_url: Optional[str], api_token: Optional[str] = None) -> AppConfig:
    """Point the session store at a remote API (None = local SQLite)."""
    config = load_config()
    config.api_url = api_url.rstrip("/") if api_url else None
    if api_token is not None:
        config.api_token = api_token or None
    save_config(config)
    return config


def set_tick_source(kind: TickSourceKind) -> AppConfig:
    config = load_config()
    config.tick_source = kind
    save_config(config)
    return config


def set_notifications(
    sound: Optional[bool] = None, system: Optional[bool] = None
) -> AppConfig:
    """Turn the completion bell and desktop popups on or off."""
    config = load_config()
    if sound is not None:
        config.sound_enabled = sound
    if system is not None:
        config.system_notifications = system
    save_config(config)
    return config
