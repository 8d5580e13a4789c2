"""Registry of live component instances known to the application."""

from __future__ import annotations

from typing import Any, Dict, Iterator, Optional, Tuple


class ComponentRegistry:
    """Ordered ``name -> instance`` mapping populated while the app is built.

    Instances may be ``None`` for components that are declared but not
    constructed (for example optional services disabled by configuration).
    """

    def __init__(self) -> None:
        self._components: Dict[str, Any] = {}

    def register(self, name: str, instance: Any) -> Any:
        if name in self._components:
            raise ValueError(f"Component {name!r} is already registered")
        self._components[name] = instance
        return instance

    def get(self, name: str) -> Optional[Any]:
        return self._components.get(name)

    def items(self) -> Iterator[Tuple[str, Any]]:
        return iter(list(self._components.items()))

    def __contains__(self, name: object) -> bool:
        return name in self._components

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._components))

    def __len__(self) -> int:
        return len(self._components)


__all__ = ["ComponentRegistry"]
