"""Passive bookkeeping of multiplexer windows.

The registry is mutated only by applying window events produced by the
multiplexer driver. It keeps three invariants:

- ids come from a monotonic allocator and are never reused until reset()
- whenever any window exists, exactly one of them is active
- closing the active window promotes the first remaining window
"""

from dataclasses import dataclass

from sshmux.errors import UnknownWindowError
from sshmux.events import Event, WindowClosed, WindowCreated, WindowSwitched


@dataclass(frozen=True)
class Window:
    """One multiplexer window as seen by the client."""

    id: int
    name: str
    active: bool = False


class WindowRegistry:
    """Map of window id to name plus the active-window pointer."""

    def __init__(self):
        self._names: dict[int, str] = {}
        self._active_id: int | None = None
        self._next_id = 0

    @property
    def active_id(self) -> int | None:
        return self._active_id

    @property
    def next_id(self) -> int:
        return self._next_id

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, window_id: object) -> bool:
        return window_id in self._names

    @property
    def windows(self) -> list[Window]:
        """Windows in creation order, with the active flag filled in."""
        return [
            Window(id=window_id, name=name, active=window_id == self._active_id)
            for window_id, name in self._names.items()
        ]

    def allocate_id(self) -> int:
        """Reserve the next window id."""
        window_id = self._next_id
        self._next_id += 1
        return window_id

    def apply(self, event: Event) -> None:
        """Apply one window event.

        Raises:
            UnknownWindowError: Switch or close names an unregistered window
            ValueError: Create reuses an id already handed out
        """
        if isinstance(event, WindowCreated):
            if event.window_id in self._names:
                raise ValueError(f"Window id already registered: {event.window_id}")
            self._names[event.window_id] = event.name
            self._active_id = event.window_id
            self._next_id = max(self._next_id, event.window_id + 1)
        elif isinstance(event, WindowSwitched):
            if event.window_id not in self._names:
                raise UnknownWindowError(event.window_id)
            self._active_id = event.window_id
        elif isinstance(event, WindowClosed):
            if event.window_id not in self._names:
                raise UnknownWindowError(event.window_id)
            del self._names[event.window_id]
            if self._active_id == event.window_id:
                self._active_id = next(iter(self._names), None)

    def reset(self) -> None:
        """Forget every window and restart id allocation."""
        self._names.clear()
        self._active_id = None
        self._next_id = 0


__all__ = ["Window", "WindowRegistry"]
