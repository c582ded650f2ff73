"""Per-update navigation controller: show, reply, edit, back and clear."""

from __future__ import annotations

import copy
import inspect
import logging
from typing import Any

from telegram import InlineKeyboardButton

from .correlator import OutgoingCallCorrelator
from .errors import MenuUsageError
from .gateway import Gateway
from .keys import resolve_chat_id, resolve_thread_id
from .models import (
    MenuActionPayload,
    MenuContext,
    MenuDefinition,
    MenuHistoryEntry,
    MenuRenderResult,
    MenuSession,
    MenuShowOptions,
    MenuState,
    PendingKind,
    PendingOutgoingEntry,
)
from .registry import MenuRegistry, RenderPass
from .serializer import clone_session
from .storage import MenuStorage
from .tokens import decode_action, normalize_keyboard, to_reply_markup

_log = logging.getLogger(__name__)


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _coerce_render(result: Any) -> MenuRenderResult:
    if isinstance(result, MenuRenderResult):
        return result
    if isinstance(result, dict):
        return MenuRenderResult(
            text=str(result.get("text") or ""),
            keyboard=result.get("keyboard"),
            payload=result.get("payload"),
        )
    if isinstance(result, str):
        return MenuRenderResult(text=result)
    raise TypeError(f"menu render returned {type(result).__name__}, expected MenuRenderResult")


def resolve_path(previous: MenuState | None, menu_id: str, options: MenuShowOptions) -> list[str]:
    if options.path is not None:
        return list(options.path)
    previous_path = list(previous.path) if previous is not None else []
    if not options.stack and previous_path:
        return previous_path[:-1] + [menu_id]
    return previous_path + [menu_id]


class MenuMessageController:
    def __init__(
        self,
        *,
        update: Any,
        context: Any,
        key: str,
        session: MenuSession,
        storage: MenuStorage,
        menus: MenuRegistry,
        correlator: OutgoingCallCorrelator,
        gateway: Gateway | None,
        namespace: str,
        clock: Any,
    ) -> None:
        self.update = update
        self.context = context
        self.key = key
        self.namespace = namespace
        self._session = session
        self._storage = storage
        self._menus = menus
        self._correlator = correlator
        self._gateway = gateway
        self._clock = clock
        self._pass: RenderPass | None = None
        self.ctx = MenuContext(update=update, context=context, menu_message=self)

    @property
    def session(self) -> MenuSession:
        return self._session

    async def refresh(self) -> MenuSession:
        _, self._session = await self._storage.read(self.key)
        return self._session

    async def show(
        self,
        menu_id: str,
        payload: Any = None,
        options: MenuShowOptions | None = None,
    ) -> MenuRenderResult:
        return await self._show(menu_id, payload, options or MenuShowOptions(), pop_replaced=True)

    async def reply(self, menu_id: str, payload: Any = None, **options: Any) -> Any:
        gateway = self._require_gateway()
        chat_id = resolve_chat_id(self.update)
        if chat_id is None:
            raise MenuUsageError("Menu operations require a chat context")
        render = await self.show(menu_id, payload)
        thread_id = resolve_thread_id(self.update)
        if thread_id is not None:
            options.setdefault("message_thread_id", thread_id)
        keyboard = normalize_keyboard(render.keyboard)
        entry = self._pending_entry("send", menu_id, chat_id, render, keyboard, options)
        self._correlator.expect(gateway, entry)
        try:
            response = await gateway.send_message(chat_id, render.text, reply_markup=to_reply_markup(keyboard), **options)
        finally:
            self._correlator.withdraw(gateway, entry)
        await self.refresh()
        return response

    async def edit(
        self,
        menu_id: str,
        payload: Any = None,
        *,
        message_id: int | None = None,
        chat_id: int | str | None = None,
        **options: Any,
    ) -> Any:
        """Re-render in place. The history slot is overwritten once the edit call settles."""
        gateway = self._require_gateway()
        if chat_id is None:
            chat_id = resolve_chat_id(self.update)
        if message_id is None and self._session.active is not None:
            message_id = self._session.active.message_id
        if chat_id is None or message_id is None:
            raise MenuUsageError("menu_message.edit requires a known message id and chat id")
        render = await self._show(menu_id, payload, MenuShowOptions(stack=False), pop_replaced=False)
        keyboard = normalize_keyboard(render.keyboard)
        entry = self._pending_entry("edit", menu_id, chat_id, render, keyboard, options, message_id=message_id)
        self._correlator.expect(gateway, entry)
        try:
            response = await gateway.edit_message_text(
                chat_id,
                message_id,
                render.text,
                reply_markup=to_reply_markup(keyboard),
                **options,
            )
        finally:
            self._correlator.withdraw(gateway, entry)
        await self.refresh()
        return response

    async def back(self, options: MenuShowOptions | None = None) -> MenuRenderResult | None:
        async def _step(draft: MenuSession) -> MenuRenderResult | None:
            if not draft.history:
                draft.active = None
                return None
            draft.history.pop()
            if not draft.history:
                draft.active = None
                return None
            target = draft.history[-1]
            menu = self._menus.require(target.menu_id)
            state = MenuState(
                menu_id=target.menu_id,
                payload=copy.deepcopy(target.payload),
                path=list(options.path) if options is not None and options.path is not None else list(target.path),
                message_id=target.message_id,
                timestamp=self._clock(),
            )
            draft.active = state
            render = await self._render_into(menu, state, draft)
            # Buttons minted for the previous render of this screen stop resolving.
            target.render_id = state.render_id
            target.buttons = list(state.buttons)
            target.text = render.text
            target.keyboard = normalize_keyboard(render.keyboard)
            target.payload = copy.deepcopy(state.payload)
            target.timestamp = state.timestamp
            return render

        return await self._transition(_step)

    async def clear(self) -> None:
        await self._storage.clear(self.key)
        self._session = MenuSession()

    def current(self) -> MenuState | None:
        return clone_session(self._session).active

    def history(self) -> list[MenuHistoryEntry]:
        return clone_session(self._session).history

    def build_action_data(self, menu_id: str | None, action: str, data: str | None = None) -> str:
        """Mint a button token for the menu being rendered."""
        if self._pass is None:
            raise MenuUsageError("Menu buttons can only be created while a menu is rendering")
        return self._pass.mint(action, data=data, menu_id=menu_id)

    def button(self, text: str, action: str, data: str | None = None, menu_id: str | None = None) -> InlineKeyboardButton:
        return InlineKeyboardButton(text, callback_data=self.build_action_data(menu_id, action, data))

    def parse_action_data(self, raw: str) -> MenuActionPayload | None:
        token = decode_action(raw, self.namespace)
        if token is None:
            return None
        session = self._session
        candidates: list[MenuState | MenuHistoryEntry] = []
        if session.active is not None:
            candidates.append(session.active)
        candidates.extend(reversed(session.history))
        for entry in candidates:
            if entry.menu_id != token.menu_id or entry.render_id != token.render_id:
                continue
            for button in entry.buttons:
                if button.id == token.button_id:
                    return MenuActionPayload(
                        menu_id=button.menu_id,
                        source_menu_id=entry.menu_id,
                        render_id=entry.render_id,
                        button_id=button.id,
                        action=button.action,
                        data=button.data,
                    )
        return None

    async def _show(
        self,
        menu_id: str,
        payload: Any,
        options: MenuShowOptions,
        pop_replaced: bool,
    ) -> MenuRenderResult:
        menu = self._menus.require(menu_id)

        async def _step(draft: MenuSession) -> MenuRenderResult:
            previous = draft.active
            state = MenuState(
                menu_id=menu_id,
                payload=payload,
                path=resolve_path(previous, menu_id, options),
                message_id=previous.message_id if previous is not None else None,
                timestamp=self._clock(),
            )
            if pop_replaced and not options.stack and draft.history:
                draft.history.pop()
            draft.active = state
            changed = previous is None or previous.menu_id != menu_id
            if changed and previous is not None:
                previous_menu = self._menus.get(previous.menu_id)
                if previous_menu is not None and previous_menu.on_leave is not None:
                    await maybe_await(previous_menu.on_leave(self.ctx, draft))
            if changed and menu.on_enter is not None:
                await maybe_await(menu.on_enter(self.ctx, draft))
            return await self._render_into(menu, state, draft)

        return await self._transition(_step)

    async def _transition(self, step: Any) -> Any:
        previous_session = self._session

        async def _tracked(draft: MenuSession) -> Any:
            self._session = draft
            return await step(draft)

        try:
            outcome = await self._storage.with_session(self.key, _tracked)
        except BaseException:
            self._session = previous_session
            raise
        self._session = outcome.session
        return outcome.result

    async def _render_into(self, menu: MenuDefinition, state: MenuState, session: MenuSession) -> MenuRenderResult:
        render_pass = RenderPass(menu.id, self.namespace)
        outer = self._pass
        self._pass = render_pass
        try:
            result = _coerce_render(await maybe_await(menu.render(self.ctx, state, session)))
        finally:
            self._pass = outer
            buttons = render_pass.close()
        state.render_id = render_pass.render_id
        state.buttons = buttons
        if result.payload is not None:
            state.payload = result.payload
        _log.debug("rendered menu %s render_id=%s buttons=%d", menu.id, state.render_id, len(buttons))
        return result

    def _require_gateway(self) -> Gateway:
        if self._gateway is None:
            raise MenuUsageError("No gateway registered for menu messages")
        return self._gateway

    def _pending_entry(
        self,
        kind: PendingKind,
        menu_id: str,
        chat_id: int | str,
        render: MenuRenderResult,
        keyboard: Any,
        options: dict[str, Any],
        message_id: int | None = None,
    ) -> PendingOutgoingEntry:
        active = self._session.active
        return PendingOutgoingEntry(
            kind=kind,
            session_key=self.key,
            menu_id=menu_id,
            chat_id=chat_id,
            render_id=active.render_id if active is not None else "",
            buttons=list(active.buttons) if active is not None else [],
            text=render.text,
            keyboard=keyboard,
            payload=copy.deepcopy(active.payload) if active is not None else None,
            path=list(active.path) if active is not None else [menu_id],
            message_id=message_id,
            options=dict(options),
        )
