"""
Row-level change notification shared by the profile repository and the
knowledge metadata table.
"""

import inspect
from typing import Awaitable, Callable, Dict, List, Optional, Union

from ..models.avatar_profile import ProfileChange
from ...utils.logging import get_logger


ChangeCallback = Callable[[ProfileChange], Union[None, Awaitable[None]]]


class ChangeNotifier:
    """
    Keeps per-profile listeners and delivers ProfileChange events to them.

    Delivery is at-most-once and immediate: nothing is buffered for listeners
    that register after the write.
    """

    def __init__(self):
        self._listeners: Dict[str, List[ChangeCallback]] = {}
        self._notifier_logger = get_logger(__name__)

    async def subscribe_to_changes(self, profile_id: str, callback: ChangeCallback) -> Callable[[], None]:
        """
        Register ``callback`` for changes of ``profile_id``

        Returns:
            A release function; calling it more than once is harmless
        """
        self._listeners.setdefault(profile_id, []).append(callback)

        def release():
            listeners = self._listeners.get(profile_id)
            if listeners and callback in listeners:
                listeners.remove(callback)
                if not listeners:
                    del self._listeners[profile_id]

        return release

    def listener_count(self, profile_id: Optional[str] = None) -> int:
        if profile_id is not None:
            return len(self._listeners.get(profile_id, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    async def _emit(self, change: ProfileChange):
        for callback in list(self._listeners.get(change.profile_id, [])):
            try:
                result = callback(change)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._notifier_logger.error(
                    f"Change listener for profile {change.profile_id} failed: {e}"
                )
