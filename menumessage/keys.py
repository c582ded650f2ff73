from __future__ import annotations

from typing import Any

from .errors import MenuUsageError

KEY_SEPARATOR = ":"
ANONYMOUS_ACTOR = "anon"


def resolve_thread_id(update: Any) -> int | None:
    message = getattr(update, "effective_message", None)
    thread_id = getattr(message, "message_thread_id", None)
    if isinstance(thread_id, int):
        return thread_id
    query = getattr(update, "callback_query", None)
    thread_id = getattr(getattr(query, "message", None), "message_thread_id", None)
    if isinstance(thread_id, int):
        return thread_id
    return None


def resolve_chat_id(update: Any) -> int | None:
    chat = getattr(update, "effective_chat", None)
    return getattr(chat, "id", None)


def default_key_builder(update: Any) -> str:
    """chat x thread x actor, e.g. ``"100:10:200"``."""
    chat_id = resolve_chat_id(update)
    if chat_id is None:
        raise MenuUsageError("Cannot derive menu storage key without chat context")
    user = getattr(update, "effective_user", None)
    actor = getattr(user, "id", None)
    thread_id = resolve_thread_id(update) or 0
    return KEY_SEPARATOR.join([str(chat_id), str(thread_id), str(actor if actor is not None else ANONYMOUS_ACTOR)])
