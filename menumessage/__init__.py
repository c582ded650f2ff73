"""Button-driven menu navigation for Telegram chats."""

from .controller import MenuMessageController
from .errors import MenuConfigurationError, MenuMessageError, MenuUsageError
from .gateway import Gateway, TelegramGateway
from .models import (
    MenuActionPayload,
    MenuButtonState,
    MenuContext,
    MenuDefinition,
    MenuHistoryEntry,
    MenuRenderResult,
    MenuSession,
    MenuShowOptions,
    MenuState,
)
from .plugin import MenuMessagePlugin, create_menu_message_plugin
from .storage import KeyedLocks, MemoryStorageAdapter, SQLiteStorageAdapter

__all__ = [
    "Gateway",
    "KeyedLocks",
    "MemoryStorageAdapter",
    "MenuActionPayload",
    "MenuButtonState",
    "MenuConfigurationError",
    "MenuContext",
    "MenuDefinition",
    "MenuHistoryEntry",
    "MenuMessageController",
    "MenuMessageError",
    "MenuMessagePlugin",
    "MenuRenderResult",
    "MenuSession",
    "MenuShowOptions",
    "MenuState",
    "MenuUsageError",
    "SQLiteStorageAdapter",
    "TelegramGateway",
    "create_menu_message_plugin",
]
