"""Session <-> stored value conversion and aliasing-free copies."""

from __future__ import annotations

import copy
import json
from typing import Any, Protocol

from .models import MenuButtonState, MenuHistoryEntry, MenuSession, MenuState


class MenuSessionSerializer(Protocol):
    def serialize(self, session: MenuSession) -> Any: ...

    def deserialize(self, value: Any) -> MenuSession: ...


def _button_to_dict(button: MenuButtonState) -> dict[str, Any]:
    item: dict[str, Any] = {"id": button.id, "menu_id": button.menu_id, "action": button.action}
    if button.data is not None:
        item["data"] = button.data
    return item


def _button_from_dict(raw: dict[str, Any]) -> MenuButtonState:
    data = raw.get("data")
    return MenuButtonState(
        id=str(raw["id"]),
        menu_id=str(raw["menu_id"]),
        action=str(raw["action"]),
        data=str(data) if data is not None else None,
    )


def _keyboard_copy(keyboard: Any) -> list[list[dict[str, Any]]] | None:
    if not keyboard:
        return None
    return [[copy.deepcopy(dict(button)) for button in row] for row in keyboard]


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


def session_to_dict(session: MenuSession) -> dict[str, Any]:
    active = session.active
    return {
        "active": None
        if active is None
        else {
            "menu_id": active.menu_id,
            "payload": copy.deepcopy(active.payload),
            "path": list(active.path),
            "message_id": active.message_id,
            "timestamp": active.timestamp,
            "render_id": active.render_id,
            "buttons": [_button_to_dict(button) for button in active.buttons],
        },
        "history": [
            {
                "menu_id": entry.menu_id,
                "message_id": entry.message_id,
                "text": entry.text,
                "keyboard": _keyboard_copy(entry.keyboard),
                "payload": copy.deepcopy(entry.payload),
                "path": list(entry.path),
                "timestamp": entry.timestamp,
                "render_id": entry.render_id,
                "buttons": [_button_to_dict(button) for button in entry.buttons],
            }
            for entry in session.history
        ],
    }


def session_from_dict(value: dict[str, Any] | None) -> MenuSession:
    if not value:
        return MenuSession()
    raw_active = value.get("active")
    active = None
    if isinstance(raw_active, dict):
        active = MenuState(
            menu_id=str(raw_active["menu_id"]),
            payload=copy.deepcopy(raw_active.get("payload")),
            path=[str(item) for item in raw_active.get("path") or []],
            message_id=_optional_int(raw_active.get("message_id")),
            timestamp=int(raw_active.get("timestamp") or 0),
            render_id=str(raw_active.get("render_id") or ""),
            buttons=[_button_from_dict(item) for item in raw_active.get("buttons") or []],
        )
    history = [
        MenuHistoryEntry(
            menu_id=str(item["menu_id"]),
            message_id=_optional_int(item.get("message_id")),
            text=str(item.get("text") or ""),
            keyboard=_keyboard_copy(item.get("keyboard")),
            payload=copy.deepcopy(item.get("payload")),
            path=[str(part) for part in item.get("path") or []],
            timestamp=int(item.get("timestamp") or 0),
            render_id=str(item.get("render_id") or ""),
            buttons=[_button_from_dict(button) for button in item.get("buttons") or []],
        )
        for item in value.get("history") or []
        if isinstance(item, dict)
    ]
    return MenuSession(active=active, history=history)


def clone_session(session: MenuSession) -> MenuSession:
    return session_from_dict(session_to_dict(session))


class DictSerializer:
    """Default serializer: a JSON-compatible dict per session."""

    def serialize(self, session: MenuSession) -> dict[str, Any]:
        return session_to_dict(session)

    def deserialize(self, value: Any) -> MenuSession:
        return session_from_dict(value)

    def clone(self, session: MenuSession) -> MenuSession:
        return clone_session(session)


class JsonSerializer:
    def serialize(self, session: MenuSession) -> str:
        return json.dumps(session_to_dict(session), ensure_ascii=True, separators=(",", ":"))

    def deserialize(self, value: Any) -> MenuSession:
        if not value:
            return MenuSession()
        return session_from_dict(json.loads(value))

    def clone(self, session: MenuSession) -> MenuSession:
        return clone_session(session)


def clone_with(serializer: MenuSessionSerializer, session: MenuSession) -> MenuSession:
    clone = getattr(serializer, "clone", None)
    if callable(clone):
        return clone(session)
    return serializer.deserialize(serializer.serialize(session))
