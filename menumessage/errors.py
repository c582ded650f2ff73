from __future__ import annotations


class MenuMessageError(Exception):
    """Base class for menu message failures."""


class MenuConfigurationError(MenuMessageError, ValueError):
    """Setup is wrong: missing storage, duplicate or unknown menu ids."""


class MenuUsageError(MenuMessageError, RuntimeError):
    """An operation was called without what it needs (chat, message id, open render pass)."""
