from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from .errors import MenuConfigurationError, MenuUsageError
from .models import MenuButtonState, MenuDefinition
from .tokens import DEFAULT_NAMESPACE, encode_action, new_button_id, new_render_id


class MenuRegistry:
    def __init__(self, definitions: Iterable[MenuDefinition] | Mapping[str, MenuDefinition]) -> None:
        self._menus: dict[str, MenuDefinition] = {}
        items = definitions.values() if isinstance(definitions, Mapping) else definitions
        for definition in items:
            menu_id = getattr(definition, "id", None)
            if not menu_id:
                raise MenuConfigurationError("Menu definitions must include an id")
            if menu_id in self._menus:
                raise MenuConfigurationError(f"Duplicate menu id detected: {menu_id}")
            self._menus[menu_id] = definition

    def get(self, menu_id: str | None) -> MenuDefinition | None:
        if menu_id is None:
            return None
        return self._menus.get(menu_id)

    def require(self, menu_id: str) -> MenuDefinition:
        definition = self._menus.get(menu_id)
        if definition is None:
            raise MenuConfigurationError(f"Unknown menu id: {menu_id}")
        return definition

    def __contains__(self, menu_id: object) -> bool:
        return menu_id in self._menus

    def __iter__(self) -> Iterator[MenuDefinition]:
        return iter(self._menus.values())

    def __len__(self) -> int:
        return len(self._menus)


class RenderPass:
    """Collects the buttons one render callback asks for.

    Buttons can only be minted while the pass is open; ``close()`` freezes them.
    """

    def __init__(self, menu_id: str, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.menu_id = menu_id
        self.namespace = namespace
        self.render_id = new_render_id()
        self._buttons: list[MenuButtonState] = []
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed

    def mint(self, action: str, data: str | None = None, menu_id: str | None = None) -> str:
        if self._closed:
            raise MenuUsageError("Menu buttons can only be created while a menu is rendering")
        taken = {button.id for button in self._buttons}
        button_id = new_button_id()
        while button_id in taken:
            button_id = new_button_id()
        self._buttons.append(
            MenuButtonState(id=button_id, menu_id=menu_id or self.menu_id, action=str(action), data=data)
        )
        return encode_action(self.namespace, self.menu_id, self.render_id, button_id)

    def close(self) -> list[MenuButtonState]:
        self._closed = True
        return list(self._buttons)
