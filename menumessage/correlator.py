"""Matches completed send/edit calls with the renders that queued them."""

from __future__ import annotations

import logging
from typing import Any, Callable

from .gateway import EDIT_METHOD, SEND_METHOD, CallNext, Gateway, Interceptor, extract_message_id
from .models import MenuHistoryEntry, MenuSession, PendingOutgoingEntry
from .storage import MenuStorage
from .tokens import keyboard_from_payload, keyboard_has_token

_log = logging.getLogger(__name__)

TransformerPredicate = Callable[[str, dict[str, Any]], bool]
Diagnostics = Callable[[BaseException, str, dict[str, Any]], None]

_KIND_BY_METHOD = {SEND_METHOD: "send", EDIT_METHOD: "edit"}


def log_diagnostics(exc: BaseException, method: str, payload: dict[str, Any]) -> None:
    _log.error(
        "menu bookkeeping failed for %s chat_id=%s",
        method,
        payload.get("chat_id"),
        exc_info=(type(exc), exc, exc.__traceback__),
    )


class PendingQueue:
    """FIFO of expected outgoing calls, one list per gateway client id."""

    def __init__(self) -> None:
        self._queues: dict[str, list[PendingOutgoingEntry]] = {}

    def enqueue(self, client_id: str, entry: PendingOutgoingEntry) -> None:
        self._queues.setdefault(client_id, []).append(entry)

    def discard(self, client_id: str, entry: PendingOutgoingEntry) -> bool:
        queue = self._queues.get(client_id) or []
        for idx, item in enumerate(queue):
            if item is entry:
                del queue[idx]
                return True
        return False

    def pending(self, client_id: str) -> list[PendingOutgoingEntry]:
        return list(self._queues.get(client_id) or [])

    def take(self, client_id: str, method: str, payload: dict[str, Any]) -> PendingOutgoingEntry | None:
        chat_id = payload.get("chat_id")
        if chat_id is None or chat_id == "":
            return None
        queue = self._queues.get(client_id) or []
        for idx, entry in enumerate(queue):
            if _matches(entry, method, chat_id, payload):
                return queue.pop(idx)
        return None


def _matches(entry: PendingOutgoingEntry, method: str, chat_id: Any, payload: dict[str, Any]) -> bool:
    if str(entry.chat_id) != str(chat_id):
        return False
    kind = _KIND_BY_METHOD.get(method)
    if kind != entry.kind:
        return False
    if kind == "edit":
        message_id = payload.get("message_id")
        if message_id is None:
            return False
        return entry.message_id is None or entry.message_id == message_id
    return True


class OutgoingCallCorrelator:
    def __init__(
        self,
        storage: MenuStorage,
        namespace: str,
        clock: Callable[[], int],
        predicate: TransformerPredicate | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self._storage = storage
        self._namespace = namespace
        self._clock = clock
        self._predicate = predicate
        self._diagnostics = diagnostics or log_diagnostics
        self._registered: set[str] = set()
        self.queue = PendingQueue()

    def is_registered(self, gateway: Gateway) -> bool:
        return gateway.client_id in self._registered

    def register(self, gateway: Gateway) -> bool:
        """Install the interceptor once per client. Returns False when already installed."""
        if gateway.client_id in self._registered:
            return False
        gateway.add_interceptor(self._interceptor_for(gateway.client_id))
        self._registered.add(gateway.client_id)
        return True

    def expect(self, gateway: Gateway, entry: PendingOutgoingEntry) -> None:
        self.queue.enqueue(gateway.client_id, entry)

    def withdraw(self, gateway: Gateway, entry: PendingOutgoingEntry) -> None:
        self.queue.discard(gateway.client_id, entry)

    def _interceptor_for(self, client_id: str) -> Interceptor:
        async def _intercept(call_next: CallNext, method: str, payload: dict[str, Any]) -> Any:
            result = await call_next(method, payload)
            try:
                await self._handle_call(client_id, method, payload, result)
            except Exception as exc:
                self._report(exc, method, payload)
            return result

        return _intercept

    def _report(self, exc: Exception, method: str, payload: dict[str, Any]) -> None:
        try:
            self._diagnostics(exc, method, payload)
        except Exception:
            _log.exception("menu diagnostics callback failed")

    async def _handle_call(self, client_id: str, method: str, payload: dict[str, Any], result: Any) -> None:
        if method not in _KIND_BY_METHOD:
            return
        if self._predicate is not None and not self._predicate(method, payload):
            return
        keyboard = keyboard_from_payload(payload, result)
        if not keyboard_has_token(keyboard, self._namespace):
            return
        entry = self.queue.take(client_id, method, payload)
        if entry is None:
            _log.debug("no pending menu entry for %s chat_id=%s", method, payload.get("chat_id"))
            return
        message_id = extract_message_id(method, payload, result)
        if message_id is None:
            _log.debug("%s result carried no message id", method)
            return
        await self._storage.with_session(entry.session_key, lambda session: self._fold(session, entry, message_id))

    def _fold(self, session: MenuSession, entry: PendingOutgoingEntry, message_id: int) -> None:
        timestamp = self._clock()
        history_entry = MenuHistoryEntry(
            menu_id=entry.menu_id,
            message_id=message_id,
            text=entry.text,
            keyboard=entry.keyboard,
            payload=entry.payload,
            path=list(entry.path),
            timestamp=timestamp,
            render_id=entry.render_id,
            buttons=list(entry.buttons),
        )
        if entry.kind == "edit" and session.history:
            session.history[-1] = history_entry
        else:
            session.history.append(history_entry)
        active = session.active
        if active is not None and active.menu_id == entry.menu_id:
            active.message_id = message_id
            active.timestamp = timestamp
        _log.debug("menu %s %s settled as message %s", entry.menu_id, entry.kind, message_id)
