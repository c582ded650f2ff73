from __future__ import annotations

from typing import Any

from telethon import Button, TelegramClient

from .gateway import EDIT_METHOD, SEND_METHOD, Gateway
from .tokens import normalize_keyboard


def _to_buttons(reply_markup: Any) -> list[list[Any]] | None:
    matrix = normalize_keyboard(reply_markup)
    if not matrix:
        return None
    rows: list[list[Any]] = []
    for row in matrix:
        buttons: list[Any] = []
        for item in row:
            text = str(item.get("text") or "")
            if item.get("callback_data") is not None:
                buttons.append(Button.inline(text, data=str(item["callback_data"]).encode("utf-8")))
            elif item.get("url"):
                buttons.append(Button.url(text, str(item["url"])))
        if buttons:
            rows.append(buttons)
    return rows or None


class TelethonGateway(Gateway):
    """Gateway for a bot session driven through telethon instead of the Bot API."""

    def __init__(self, client: TelegramClient) -> None:
        super().__init__()
        self._client = client

    async def _invoke(self, method: str, payload: dict[str, Any]) -> Any:
        buttons = _to_buttons(payload.get("reply_markup"))
        if method == SEND_METHOD:
            return await self._client.send_message(payload["chat_id"], payload["text"], buttons=buttons)
        if method == EDIT_METHOD:
            return await self._client.edit_message(
                payload["chat_id"],
                int(payload["message_id"]),
                payload["text"],
                buttons=buttons,
            )
        raise NotImplementedError(f"telethon gateway does not support {method}")
