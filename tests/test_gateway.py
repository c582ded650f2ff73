from __future__ import annotations

import unittest
from types import SimpleNamespace
from typing import Any

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from menumessage.gateway import Gateway, TelegramGateway, extract_message_id
from menumessage.telethon_gateway import TelethonGateway


class _FakeBot:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def send_message(self, **kwargs: Any) -> Any:
        self.calls.append(("send_message", kwargs))
        return SimpleNamespace(message_id=11)

    async def edit_message_text(self, **kwargs: Any) -> Any:
        self.calls.append(("edit_message_text", kwargs))
        return SimpleNamespace(message_id=kwargs["message_id"])

    async def do_api_request(self, endpoint: str, api_kwargs: dict[str, Any] | None = None) -> Any:
        self.calls.append((endpoint, api_kwargs or {}))
        return True


class _FakeTelethonClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    async def send_message(self, entity: Any, message: str, **kwargs: Any) -> Any:
        self.calls.append(("send_message", (entity, message), kwargs))
        return SimpleNamespace(id=77)

    async def edit_message(self, entity: Any, message_id: int, text: str, **kwargs: Any) -> Any:
        self.calls.append(("edit_message", (entity, message_id, text), kwargs))
        return SimpleNamespace(id=message_id)


class GatewayInterceptorTest(unittest.IsolatedAsyncioTestCase):
    async def test_interceptors_wrap_in_registration_order(self) -> None:
        order: list[str] = []

        def _make(name: str):
            async def _intercept(call_next, method, payload):
                order.append(f"{name}:before")
                result = await call_next(method, payload)
                order.append(f"{name}:after")
                return result

            return _intercept

        gateway = TelegramGateway(_FakeBot())  # type: ignore[arg-type]
        gateway.add_interceptor(_make("outer"))
        gateway.add_interceptor(_make("inner"))
        await gateway.send_message(1, "hi")
        self.assertEqual(["outer:before", "inner:before", "inner:after", "outer:after"], order)

    async def test_client_ids_are_unique(self) -> None:
        self.assertNotEqual(TelegramGateway(_FakeBot()).client_id, TelegramGateway(_FakeBot()).client_id)  # type: ignore[arg-type]

    async def test_base_gateway_has_no_transport(self) -> None:
        with self.assertRaises(NotImplementedError):
            await Gateway().send_message(1, "hi")


class TelegramGatewayTest(unittest.IsolatedAsyncioTestCase):
    async def test_methods_map_to_bot_calls(self) -> None:
        bot = _FakeBot()
        gateway = TelegramGateway(bot)  # type: ignore[arg-type]
        markup = InlineKeyboardMarkup([[InlineKeyboardButton("go", callback_data="mm:a:b:c")]])

        sent = await gateway.send_message(5, "hello", reply_markup=markup, message_thread_id=3)
        edited = await gateway.edit_message_text(5, 11, "changed")
        other = await gateway.call("answerCallbackQuery", {"callback_query_id": "q"})

        self.assertEqual(11, sent.message_id)
        self.assertEqual(11, edited.message_id)
        self.assertTrue(other)
        self.assertEqual(
            ("send_message", {"chat_id": 5, "text": "hello", "message_thread_id": 3, "reply_markup": markup}),
            bot.calls[0],
        )
        self.assertEqual(("edit_message_text", {"chat_id": 5, "message_id": 11, "text": "changed"}), bot.calls[1])
        self.assertEqual(("answerCallbackQuery", {"callback_query_id": "q"}), bot.calls[2])


class TelethonGatewayTest(unittest.IsolatedAsyncioTestCase):
    async def test_keyboard_becomes_inline_buttons(self) -> None:
        client = _FakeTelethonClient()
        gateway = TelethonGateway(client)  # type: ignore[arg-type]
        markup = InlineKeyboardMarkup(
            [[InlineKeyboardButton("go", callback_data="mm:a:b:c"), InlineKeyboardButton("web", url="https://example.org")]]
        )

        result = await gateway.send_message(5, "hello", reply_markup=markup)

        self.assertEqual(77, extract_message_id("sendMessage", {}, result))
        name, args, kwargs = client.calls[0]
        self.assertEqual(("send_message", (5, "hello")), (name, args))
        row = [getattr(button, "button", button) for button in kwargs["buttons"][0]]
        self.assertEqual(b"mm:a:b:c", row[0].data)
        self.assertEqual("go", row[0].text)
        self.assertEqual("https://example.org", row[1].url)

    async def test_edit_without_keyboard(self) -> None:
        client = _FakeTelethonClient()
        gateway = TelethonGateway(client)  # type: ignore[arg-type]
        await gateway.edit_message_text(5, 12, "changed")
        self.assertEqual(("edit_message", (5, 12, "changed"), {"buttons": None}), client.calls[0])

    async def test_unsupported_method(self) -> None:
        gateway = TelethonGateway(_FakeTelethonClient())  # type: ignore[arg-type]
        with self.assertRaises(NotImplementedError):
            await gateway.call("answerCallbackQuery", {})


class ExtractMessageIdTest(unittest.TestCase):
    def test_variants(self) -> None:
        self.assertEqual(3, extract_message_id("sendMessage", {}, {"message_id": 3}))
        self.assertEqual(4, extract_message_id("sendMessage", {}, SimpleNamespace(message_id=4)))
        self.assertEqual(9, extract_message_id("editMessageText", {"message_id": 9}, True))
        self.assertIsNone(extract_message_id("editMessageText", {}, True))
        self.assertIsNone(extract_message_id("sendMessage", {}, None))
