"""Share one component instance between several signal pipelines.

The wrapped component is started and shut down at most once, and is
forgotten by its registry once it has been shut down.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Hashable, Protocol


class Component(Protocol):
    """Anything with a start/shutdown lifecycle."""

    def start(self, host: Any) -> None: ...

    def shutdown(self) -> None: ...


class SharedComponent:
    """Wraps a component so that it is started and stopped only once."""

    def __init__(self, component: Component, remove: Callable[[], None]) -> None:
        self._component = component
        self._remove = remove
        self._lock = threading.Lock()
        self._started = False
        self._stopped = False

    def unwrap(self) -> Component:
        """Return the wrapped component."""
        return self._component

    def start(self, host: Any) -> None:
        """Start the wrapped component on the first call only."""
        with self._lock:
            if self._started:
                return
            self._started = True
        self._component.start(host)

    def shutdown(self) -> None:
        """Shut the wrapped component down on the first call only.

        The component is removed from its registry even if shutting
        it down fails.
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        try:
            self._component.shutdown()
        finally:
            self._remove()


class SharedComponents:
    """A registry of shared components, keyed by configuration."""

    def __init__(self) -> None:
        self._components: dict[Hashable, SharedComponent] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._components)

    def __contains__(self, key: object) -> bool:
        return key in self._components

    def get_or_add(
        self, key: Hashable, create: Callable[[], Component]
    ) -> SharedComponent:
        """Return the component registered under key, creating it if absent."""
        with self._lock:
            existing = self._components.get(key)
            if existing is not None:
                return existing
            shared = SharedComponent(create(), lambda: self._discard(key))
            self._components[key] = shared
            return shared

    def _discard(self, key: Hashable) -> None:
        with self._lock:
            self._components.pop(key, None)