"""Session records and callback shapes shared across the package."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Literal, Union

if TYPE_CHECKING:
    from .controller import MenuMessageController

KeyboardMatrix = list[list[dict[str, Any]]]
PendingKind = Literal["send", "edit"]


@dataclass(slots=True)
class MenuButtonState:
    id: str
    menu_id: str
    action: str
    data: str | None = None


@dataclass(slots=True)
class MenuState:
    menu_id: str
    payload: Any = None
    path: list[str] = field(default_factory=list)
    message_id: int | None = None
    timestamp: int = 0
    render_id: str = ""
    buttons: list[MenuButtonState] = field(default_factory=list)


@dataclass(slots=True)
class MenuHistoryEntry:
    menu_id: str
    text: str
    keyboard: KeyboardMatrix | None = None
    payload: Any = None
    path: list[str] = field(default_factory=list)
    timestamp: int = 0
    render_id: str = ""
    buttons: list[MenuButtonState] = field(default_factory=list)
    message_id: int | None = None


@dataclass(slots=True)
class MenuSession:
    active: MenuState | None = None
    history: list[MenuHistoryEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.active is None and not self.history


@dataclass(slots=True)
class MenuActionPayload:
    menu_id: str
    source_menu_id: str
    render_id: str
    button_id: str
    action: str
    data: str | None = None


@dataclass(slots=True)
class MenuRenderResult:
    text: str
    # InlineKeyboardMarkup, rows of InlineKeyboardButton, or rows of plain dicts.
    keyboard: Any = None
    payload: Any = None


@dataclass(slots=True)
class MenuShowOptions:
    stack: bool = True
    path: list[str] | None = None


@dataclass(slots=True)
class MenuContext:
    """What render and lifecycle hooks receive for the update being processed."""

    update: Any
    context: Any
    menu_message: "MenuMessageController"


MaybeAwaitable = Union[Any, Awaitable[Any]]
RenderFn = Callable[[MenuContext, MenuState, MenuSession], MaybeAwaitable]
ActionFn = Callable[[MenuContext, MenuActionPayload], MaybeAwaitable]
LifecycleFn = Callable[[MenuContext, MenuSession], MaybeAwaitable]


@dataclass(slots=True)
class MenuDefinition:
    id: str
    render: RenderFn
    on_action: ActionFn | None = None
    on_enter: LifecycleFn | None = None
    on_leave: LifecycleFn | None = None


@dataclass(slots=True)
class PendingOutgoingEntry:
    """An expected send/edit call. Lives in memory only, never persisted."""

    kind: PendingKind
    session_key: str
    menu_id: str
    chat_id: int | str
    render_id: str
    buttons: list[MenuButtonState]
    text: str
    keyboard: KeyboardMatrix | None = None
    payload: Any = None
    path: list[str] = field(default_factory=list)
    message_id: int | None = None
    options: dict[str, Any] = field(default_factory=dict)
