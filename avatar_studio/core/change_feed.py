"""
Change feed: fans out profile and knowledge changes to every view watching a
profile id.

The feed holds one watch per profile id on each change source (the profile
repository and the knowledge metadata table) no matter how many views are
subscribed. The first subscriber for an id performs the handshake with the
sources, the last one to leave releases it.

Delivery is at-most-once without replay: a view that subscribes late, or
reconnects, re-fetches the current state itself.
"""

import inspect
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union

from ..data.models.avatar_profile import ProfileChange
from ..utils.errors import NotAvailable
from ..utils.logging import get_component_logger


OnChange = Callable[[ProfileChange], Union[None, Awaitable[None]]]


class ChangeSource(Protocol):
    async def subscribe_to_changes(self, profile_id: str, callback) -> Callable[[], None]:
        ...


class Subscription:
    """
    Handle returned by ``ChangeFeed.subscribe``.

    Releasing is idempotent. The handle can be used as a context manager to
    release it when the block ends.
    """

    def __init__(self, feed: "ChangeFeed", profile_id: str, on_change: OnChange):
        self.feed = feed
        self.profile_id = profile_id
        self.on_change = on_change
        self.active = True

    def release(self):
        self.feed.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def __repr__(self) -> str:
        state = "active" if self.active else "released"
        return f"<Subscription profile={self.profile_id} {state}>"


class ChangeFeed:
    """Subscription registry keyed by profile id."""

    def __init__(self, sources: Sequence[ChangeSource]):
        """
        Initialize the change feed

        Args:
            sources: Collaborators exposing ``subscribe_to_changes``
        """
        self.sources = list(sources)
        self.logger = get_component_logger("ChangeFeed")
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._source_releases: Dict[str, List[Callable[[], None]]] = {}
        self._closed = False

    async def subscribe(self, profile_id: str, on_change: OnChange) -> Subscription:
        """
        Register ``on_change`` for changes of ``profile_id``

        Args:
            profile_id: Profile to watch
            on_change: Sync or async callable receiving each ProfileChange

        Returns:
            Subscription handle

        Raises:
            NotAvailable: the feed has been closed
        """
        if self._closed:
            raise NotAvailable("Change feed is closed")

        subscription = Subscription(self, profile_id, on_change)
        subscribers = self._subscribers.setdefault(profile_id, [])
        first = not subscribers
        subscribers.append(subscription)

        if first:
            try:
                await self._connect(profile_id)
            except Exception:
                self.logger.error(f"Handshake for profile {profile_id} failed")
                self.unsubscribe(subscription)
                raise

        self.logger.debug(f"Subscribed to {profile_id} ({len(self._subscribers.get(profile_id, []))} views)")
        return subscription

    async def _connect(self, profile_id: str):
        releases = self._source_releases.setdefault(profile_id, [])

        async def deliver(change: ProfileChange):
            await self.dispatch(change)

        for source in self.sources:
            release = await source.subscribe_to_changes(profile_id, deliver)
            # Every subscriber may have left while the handshake was pending
            if self._source_releases.get(profile_id) is not releases:
                release()
                self.logger.debug(f"Handshake for {profile_id} outlived its subscribers")
                return
            releases.append(release)

    def _disconnect(self, profile_id: str):
        for release in self._source_releases.pop(profile_id, []):
            release()
        self.logger.debug(f"Released source watches for {profile_id}")

    def unsubscribe(self, subscription: Subscription):
        """Release a subscription; releasing twice does nothing"""
        if not subscription.active:
            return
        subscription.active = False

        subscribers = self._subscribers.get(subscription.profile_id, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            self._subscribers.pop(subscription.profile_id, None)
            self._disconnect(subscription.profile_id)

    @asynccontextmanager
    async def watch(self, profile_id: str, on_change: OnChange):
        """Subscribe for the duration of an ``async with`` block"""
        subscription = await self.subscribe(profile_id, on_change)
        try:
            yield subscription
        finally:
            self.unsubscribe(subscription)

    async def dispatch(self, change: ProfileChange):
        """
        Deliver ``change`` to every subscriber of its profile id.

        A failing subscriber is logged and skipped; the others still receive
        the change.
        """
        for subscription in list(self._subscribers.get(change.profile_id, [])):
            if not subscription.active:
                continue
            try:
                result = subscription.on_change(change)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error(
                    f"Subscriber of {change.profile_id} failed on "
                    f"{change.source.value} {change.event.value}: {e}"
                )

    def subscriber_count(self, profile_id: Optional[str] = None) -> int:
        if profile_id is not None:
            return len(self._subscribers.get(profile_id, []))
        return sum(len(subscribers) for subscribers in self._subscribers.values())

    def close(self):
        """Release every subscription and source watch"""
        for subscribers in list(self._subscribers.values()):
            for subscription in list(subscribers):
                self.unsubscribe(subscription)
        self._closed = True
        self.logger.info("Change feed closed")
