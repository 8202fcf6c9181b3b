"""
irobot.host — The home-automation hub as seen by a :class:`~irobot.device.RobotDevice`.

The hub owns the capability registry, availability flag and per-device
persistent store. :class:`Host` describes the calls the device makes;
:class:`MemoryHost` is a self-contained implementation used by the CLI and
the test-suite.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class Host(Protocol):
    """Interface a hub must provide for one device."""

    def get_data(self) -> dict[str, Any]:
        """Immutable device identity (at least ``mac``) recorded at pairing time."""
        ...

    def get_store(self) -> dict[str, Any]: ...

    def get_store_value(self, key: str) -> Any: ...

    async def set_store_value(self, key: str, value: Any) -> None: ...

    def has_capability(self, name: str) -> bool: ...

    async def add_capability(self, name: str) -> None: ...

    def get_capability_value(self, name: str) -> Any: ...

    async def set_capability_value(self, name: str, value: Any) -> None:
        """May raise; callers log and carry on."""
        ...

    def register_capability_listener(
        self, name: str, handler: Callable[[Any], Awaitable[Any]]
    ) -> None: ...

    async def set_available(self) -> None: ...

    async def set_unavailable(self, reason: str) -> None: ...


class MemoryHost:
    """
    In-process :class:`Host` keeping everything in dicts.

    Example::

        host = MemoryHost(
            data={"mac": "50:14:79:aa:bb:cc"},
            store={"ip": "192.0.2.10", "auth": {"username": blid, "password": pw}},
            capabilities=["vacuumcleaner_state", "measure_battery"],
            on_change=lambda name, value: print(name, value),
        )
    """

    def __init__(
        self,
        data: dict[str, Any] | None = None,
        store: dict[str, Any] | None = None,
        capabilities: list[str] | None = None,
        on_change: Callable[[str, Any], None] | None = None,
    ) -> None:
        self._data = dict(data or {})
        self._store = dict(store or {})
        self._values: dict[str, Any] = dict.fromkeys(capabilities or [])
        self._listeners: dict[str, Callable[[Any], Awaitable[Any]]] = {}
        self._on_change = on_change
        self.available = False
        self.unavailable_reason: str | None = None

    def get_data(self) -> dict[str, Any]:
        return dict(self._data)

    def get_store(self) -> dict[str, Any]:
        return dict(self._store)

    def get_store_value(self, key: str) -> Any:
        return self._store.get(key)

    async def set_store_value(self, key: str, value: Any) -> None:
        self._store[key] = value

    def has_capability(self, name: str) -> bool:
        return name in self._values

    async def add_capability(self, name: str) -> None:
        self._values.setdefault(name, None)

    def get_capability_value(self, name: str) -> Any:
        return self._values.get(name)

    async def set_capability_value(self, name: str, value: Any) -> None:
        if name not in self._values:
            raise KeyError(f"Unknown capability {name!r}")
        if self._values[name] == value:
            return
        self._values[name] = value
        if self._on_change:
            self._on_change(name, value)

    def register_capability_listener(
        self, name: str, handler: Callable[[Any], Awaitable[Any]]
    ) -> None:
        self._listeners[name] = handler

    async def trigger(self, name: str, value: Any) -> Any:
        """Simulate the user changing *name* in the hub UI."""
        handler = self._listeners.get(name)
        if handler is None:
            raise KeyError(f"No listener for capability {name!r}")
        return await handler(value)

    async def set_available(self) -> None:
        self.available = True
        self.unavailable_reason = None

    async def set_unavailable(self, reason: str) -> None:
        self.available = False
        self.unavailable_reason = reason
