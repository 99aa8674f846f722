"""
Listener registry shared by the scanner key sources and the sync manager.
Broadcasts to every registered callback; one failing callback never stops the others.
"""
import logging
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class ListenerRegistry:
    """Ordered set of callbacks with unsubscribe handles"""

    def __init__(self, name: str = "listeners"):
        self.name = name
        self._listeners: List[Callable[..., Any]] = []

    def add(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """
        Register a callback

        Returns:
            Callable: Unsubscribe handle, safe to call more than once
        """
        self._listeners.append(callback)

        def unsubscribe():
            self.remove(callback)

        return unsubscribe

    def remove(self, callback: Callable[..., Any]) -> bool:
        try:
            self._listeners.remove(callback)
            return True
        except ValueError:
            return False

    def clear(self):
        self._listeners = []

    def notify(self, *args, **kwargs) -> int:
        """
        Call every listener with the given arguments

        Iterates over a snapshot so listeners may unsubscribe themselves
        (or others) while being notified.

        Returns:
            int: Number of listeners that completed without raising
        """
        delivered = 0
        for listener in list(self._listeners):
            try:
                listener(*args, **kwargs)
                delivered += 1
            except Exception as e:
                logger.error(f"❌ {self.name}: listener error: {e}", exc_info=True)
        return delivered

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, callback) -> bool:
        return callback in self._listeners
