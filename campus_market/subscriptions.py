"""
Handles for realtime subscriptions.

Both store backends hand out :class:`Subscription` objects.  A view collects
the ones it opens in a :class:`SubscriptionSet` and releases them on teardown;
releasing one handle never touches the others.
"""

import asyncio
import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class Subscription:
    """
    One live listener registration.

    ``release`` is idempotent.  Callbacks wrapped with :meth:`guard` stop
    firing as soon as the handle is released, even if the backend still has
    an event in flight.
    """

    def __init__(self, release: Optional[Callable[[], None]] = None, name: str = ""):
        self.name = name
        self._release = release
        self._active = True

    def __repr__(self) -> str:
        state = "active" if self._active else "released"
        return f"<Subscription {self.name or '?'} {state}>"

    @property
    def active(self) -> bool:
        return self._active

    def bind(self, release: Callable[[], None]) -> None:
        """Attach the backend release hook once the listener is registered."""
        self._release = release
        if not self._active:
            # Released before the backend finished registering
            release()

    def guard(self, callback: Callable) -> Callable:
        def _guarded(*args):
            if self._active:
                callback(*args)

        return _guarded

    def release(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._release is not None:
            self._release()
        logger.debug(f"Released subscription {self.name}")


class SubscriptionSet:
    """Subscriptions owned by a single view."""

    def __init__(self):
        self._items: List[Subscription] = []

    def __len__(self) -> int:
        return len(self._items)

    def add(self, subscription: Subscription) -> Subscription:
        self._items.append(subscription)
        return subscription

    def discard(self, subscription: Optional[Subscription]) -> None:
        """Release a single subscription and forget it."""
        if subscription is None:
            return
        subscription.release()
        if subscription in self._items:
            self._items.remove(subscription)

    def release_all(self) -> None:
        items, self._items = self._items, []
        for subscription in items:
            try:
                subscription.release()
            except Exception as exc:  # noqa: BLE001
                # One broken listener must not keep the others registered
                logger.warning(f"Failed to release {subscription!r}: {exc}")


def on_loop(loop: asyncio.AbstractEventLoop, callback: Callable) -> Callable:
    """
    Wrap ``callback`` so it can be called from a Firestore watch thread.

    The call is re-scheduled on ``loop``; events arriving after the loop was
    closed are dropped.
    """

    def _dispatch(*args):
        if loop.is_closed():
            logger.debug("Dropping realtime event: event loop closed")
            return
        loop.call_soon_threadsafe(callback, *args)

    return _dispatch
