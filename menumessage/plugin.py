"""Wires storage, registry, correlator and controllers into a python-telegram-bot application."""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Awaitable, Callable, Iterable, Mapping

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import Application, CallbackQueryHandler, TypeHandler

from .controller import MenuMessageController, maybe_await
from .correlator import Diagnostics, OutgoingCallCorrelator, TransformerPredicate
from .errors import MenuConfigurationError
from .gateway import Gateway, TelegramGateway
from .keys import default_key_builder, resolve_chat_id
from .models import MenuActionPayload, MenuContext, MenuDefinition
from .registry import MenuRegistry
from .serializer import MenuSessionSerializer
from .storage import KeyBuilder, KeyedLocks, MenuStorage, StorageAdapter
from .tokens import DEFAULT_NAMESPACE, decode_action

_log = logging.getLogger(__name__)

UnresolvedHook = Callable[[MenuContext, str], "Any | Awaitable[Any]"]

CONTEXT_ATTRIBUTE = "menu_message"


def _default_clock() -> int:
    return int(time.time() * 1000)


class MenuMessagePlugin:
    def __init__(
        self,
        *,
        storage: MenuStorage,
        menus: MenuRegistry,
        correlator: OutgoingCallCorrelator,
        namespace: str,
        clock: Callable[[], int],
        on_unresolved: UnresolvedHook | None = None,
    ) -> None:
        self.storage = storage
        self.menus = menus
        self.correlator = correlator
        self.namespace = namespace
        self._clock = clock
        self._on_unresolved = on_unresolved
        self._gateway: Gateway | None = None

    @property
    def gateway(self) -> Gateway | None:
        return self._gateway

    def register_gateway(self, gateway: Gateway) -> Gateway:
        self.correlator.register(gateway)
        if self._gateway is None:
            self._gateway = gateway
        return gateway

    async def attach(self, update: Any, context: Any = None) -> MenuMessageController | None:
        """Build the per-update controller and hang it on ``context.menu_message``."""
        if resolve_chat_id(update) is None:
            return None
        key, session = await self.storage.read(update)
        controller = MenuMessageController(
            update=update,
            context=context,
            key=key,
            session=session,
            storage=self.storage,
            menus=self.menus,
            correlator=self.correlator,
            gateway=self._gateway,
            namespace=self.namespace,
            clock=self._clock,
        )
        if context is not None:
            setattr(context, CONTEXT_ATTRIBUTE, controller)
        return controller

    async def handle_callback_query(self, update: Any, context: Any = None) -> MenuActionPayload | None:
        query = getattr(update, "callback_query", None)
        raw = getattr(query, "data", None)
        if decode_action(raw, self.namespace) is None:
            return None
        controller = getattr(context, CONTEXT_ATTRIBUTE, None) if context is not None else None
        if not isinstance(controller, MenuMessageController):
            controller = await self.attach(update, context)
            if controller is None:
                return None
        else:
            await controller.refresh()
        action = controller.parse_action_data(raw)
        await self._answer(query)
        if action is None:
            _log.debug("menu token %r did not resolve for %s", raw, controller.key)
            if self._on_unresolved is not None:
                await maybe_await(self._on_unresolved(controller.ctx, raw))
            return None
        definition = self._owning_menu(action)
        if definition is not None and definition.on_action is not None:
            await maybe_await(definition.on_action(controller.ctx, action))
        return action

    def install(self, application: Application, group: int = -1) -> None:
        self.register_gateway(TelegramGateway(application.bot))
        application.add_handler(TypeHandler(Update, self.attach), group=group)
        application.add_handler(
            CallbackQueryHandler(self.handle_callback_query, pattern=f"^{re.escape(self.namespace)}:"),
            group=group + 1,
        )

    def _owning_menu(self, action: MenuActionPayload) -> MenuDefinition | None:
        definition = self.menus.get(action.source_menu_id)
        if definition is not None and definition.on_action is not None:
            return definition
        return self.menus.get(action.menu_id)

    @staticmethod
    async def _answer(query: Any) -> None:
        answer = getattr(query, "answer", None)
        if not callable(answer):
            return
        try:
            await answer()
        except TelegramError as exc:
            _log.debug("callback query answer failed: %s", exc)


def create_menu_message_plugin(
    storage: StorageAdapter | None,
    menus: Iterable[MenuDefinition] | Mapping[str, MenuDefinition],
    *,
    key_builder: KeyBuilder | None = None,
    serializer: MenuSessionSerializer | None = None,
    history_limit: int | None = None,
    namespace: str = DEFAULT_NAMESPACE,
    clock: Callable[[], int] | None = None,
    transformer_predicate: TransformerPredicate | None = None,
    diagnostics: Diagnostics | None = None,
    key_locks: KeyedLocks | None = None,
    on_unresolved: UnresolvedHook | None = None,
) -> MenuMessagePlugin:
    if storage is None:
        raise MenuConfigurationError("menu message plugin requires a storage adapter")
    clock = clock or _default_clock
    menu_storage = MenuStorage(
        storage,
        key_builder or default_key_builder,
        serializer=serializer,
        history_limit=history_limit,
        key_locks=key_locks,
    )
    correlator = OutgoingCallCorrelator(
        menu_storage,
        namespace,
        clock,
        predicate=transformer_predicate,
        diagnostics=diagnostics,
    )
    return MenuMessagePlugin(
        storage=menu_storage,
        menus=MenuRegistry(menus),
        correlator=correlator,
        namespace=namespace,
        clock=clock,
        on_unresolved=on_unresolved,
    )
