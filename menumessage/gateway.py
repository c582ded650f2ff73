"""Gateway clients with an interceptor chain around every outgoing call."""

from __future__ import annotations

import uuid
from typing import Any, Awaitable, Callable

from telegram import Bot

SEND_METHOD = "sendMessage"
EDIT_METHOD = "editMessageText"

CallNext = Callable[[str, dict[str, Any]], Awaitable[Any]]
Interceptor = Callable[[CallNext, str, dict[str, Any]], Awaitable[Any]]


class Gateway:
    def __init__(self) -> None:
        self.client_id = uuid.uuid4().hex
        self._interceptors: list[Interceptor] = []

    def add_interceptor(self, interceptor: Interceptor) -> None:
        self._interceptors.append(interceptor)

    async def call(self, method: str, payload: dict[str, Any]) -> Any:
        # First registered interceptor is the outermost one.
        call_next: CallNext = self._invoke
        for interceptor in reversed(self._interceptors):
            call_next = _bind(interceptor, call_next)
        return await call_next(method, payload)

    async def send_message(self, chat_id: int | str, text: str, reply_markup: Any = None, **kwargs: Any) -> Any:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text, **kwargs}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return await self.call(SEND_METHOD, payload)

    async def edit_message_text(
        self,
        chat_id: int | str,
        message_id: int,
        text: str,
        reply_markup: Any = None,
        **kwargs: Any,
    ) -> Any:
        payload: dict[str, Any] = {"chat_id": chat_id, "message_id": message_id, "text": text, **kwargs}
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return await self.call(EDIT_METHOD, payload)

    async def _invoke(self, method: str, payload: dict[str, Any]) -> Any:
        raise NotImplementedError


def _bind(interceptor: Interceptor, call_next: CallNext) -> CallNext:
    async def _call(method: str, payload: dict[str, Any]) -> Any:
        return await interceptor(call_next, method, payload)

    return _call


class TelegramGateway(Gateway):
    def __init__(self, bot: Bot) -> None:
        super().__init__()
        self.bot = bot

    async def _invoke(self, method: str, payload: dict[str, Any]) -> Any:
        if method == SEND_METHOD:
            return await self.bot.send_message(**payload)
        if method == EDIT_METHOD:
            return await self.bot.edit_message_text(**payload)
        return await self.bot.do_api_request(method, api_kwargs=payload)


def extract_message_id(method: str, payload: dict[str, Any], result: Any) -> int | None:
    if method == EDIT_METHOD and isinstance(payload.get("message_id"), int):
        return int(payload["message_id"])
    if isinstance(result, dict):
        raw = result.get("message_id")
    else:
        raw = getattr(result, "message_id", None)
        if raw is None:
            raw = getattr(result, "id", None)
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    return None
