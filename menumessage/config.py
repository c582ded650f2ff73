from __future__ import annotations

import os
from dataclasses import dataclass

from .storage import MemoryStorageAdapter, SQLiteStorageAdapter, StorageAdapter
from .tokens import DEFAULT_NAMESPACE


@dataclass(frozen=True)
class MenuConfig:
    bot_token: str | None
    namespace: str
    history_limit: int
    db_path: str | None
    debug_enabled: bool


TRUE_VALUES = {"1", "true", "yes", "on"}


def _sanitize_env_value(value: str | None) -> str | None:
    if value is None:
        return None
    # Remove ASCII control characters (e.g. CR/LF from copied .env entries).
    cleaned = "".join(ch for ch in value if ch >= " " and ch != "\x7f").strip()
    return cleaned


def env_str(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return _sanitize_env_value(default)
    return _sanitize_env_value(raw)


def require_env(name: str) -> str:
    value = env_str(name)
    if not value:
        raise ValueError(f"Missing environment variable: {name}")
    return value


def env_flag(name: str, default: bool = False) -> bool:
    value = env_str(name)
    if value is None:
        return default
    return value.strip().lower() in TRUE_VALUES


def env_int(name: str, default: int) -> int:
    value = env_str(name)
    if not value:
        return default
    return int(value)


def load_config() -> MenuConfig:
    return MenuConfig(
        bot_token=env_str("MENU_BOT_TOKEN"),
        namespace=env_str("MENU_NAMESPACE", DEFAULT_NAMESPACE) or DEFAULT_NAMESPACE,
        history_limit=max(0, env_int("MENU_HISTORY_LIMIT", 20)),
        db_path=env_str("MENU_DB_PATH") or None,
        debug_enabled=env_flag("MENU_DEBUG"),
    )


def storage_from_config(config: MenuConfig) -> StorageAdapter:
    if config.db_path:
        return SQLiteStorageAdapter(config.db_path)
    return MemoryStorageAdapter()
