"""Callback-data tokens and inline keyboard helpers."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import quote, unquote

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from .models import KeyboardMatrix

_log = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "mm"
ACTION_SEPARATOR = ":"
# Telegram rejects callback_data longer than this.
MAX_CALLBACK_DATA_BYTES = 64
_ID_BYTES = 6


@dataclass(frozen=True, slots=True)
class ActionToken:
    menu_id: str
    render_id: str
    button_id: str


def new_render_id() -> str:
    return secrets.token_urlsafe(_ID_BYTES)


def new_button_id() -> str:
    return secrets.token_urlsafe(_ID_BYTES)


def _quote(value: Any) -> str:
    return quote(str(value), safe="")


def encode_action(namespace: str, menu_id: str, render_id: str, button_id: str) -> str:
    token = ACTION_SEPARATOR.join(_quote(value) for value in (namespace, menu_id, render_id, button_id))
    if len(token.encode("utf-8")) > MAX_CALLBACK_DATA_BYTES:
        _log.warning("menu token for %r exceeds %d bytes of callback_data", menu_id, MAX_CALLBACK_DATA_BYTES)
    return token


def is_menu_token(raw: Any, namespace: str = DEFAULT_NAMESPACE) -> bool:
    return isinstance(raw, str) and raw.startswith(_quote(namespace) + ACTION_SEPARATOR)


def decode_action(raw: Any, namespace: str = DEFAULT_NAMESPACE) -> ActionToken | None:
    if not is_menu_token(raw, namespace):
        return None
    segments = raw.split(ACTION_SEPARATOR)
    if len(segments) < 4:
        return None
    _, menu_id, render_id, button_id = (unquote(segment) for segment in segments[:4])
    return ActionToken(menu_id=menu_id, render_id=render_id, button_id=button_id)


def _button_dict(button: Any) -> dict[str, Any]:
    if isinstance(button, InlineKeyboardButton):
        return button.to_dict()
    if isinstance(button, dict):
        return dict(button)
    to_dict = getattr(button, "to_dict", None)
    if callable(to_dict):
        return dict(to_dict())
    raise TypeError(f"unsupported inline keyboard button: {button!r}")


def normalize_keyboard(keyboard: Any) -> KeyboardMatrix | None:
    """Turn a markup, a matrix of buttons or a matrix of dicts into a plain JSON matrix."""
    if not keyboard:
        return None
    if isinstance(keyboard, InlineKeyboardMarkup):
        rows: Iterable[Iterable[Any]] = keyboard.inline_keyboard
    elif isinstance(keyboard, dict):
        rows = keyboard.get("inline_keyboard") or []
    else:
        rows = keyboard
    return [[_button_dict(button) for button in row] for row in rows]


def to_reply_markup(matrix: KeyboardMatrix | None) -> InlineKeyboardMarkup | None:
    if not matrix:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton.de_json(dict(button), None) for button in row] for row in matrix]
    )


def keyboard_from_payload(payload: dict[str, Any], result: Any = None) -> KeyboardMatrix | None:
    markup = payload.get("reply_markup")
    if markup is None and result is not None:
        markup = result.get("reply_markup") if isinstance(result, dict) else getattr(result, "reply_markup", None)
    if markup is None:
        return None
    try:
        return normalize_keyboard(markup)
    except TypeError:
        return None


def keyboard_has_token(matrix: KeyboardMatrix | None, namespace: str = DEFAULT_NAMESPACE) -> bool:
    for row in matrix or []:
        for button in row:
            if decode_action(button.get("callback_data"), namespace) is not None:
                return True
    return False
