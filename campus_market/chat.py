"""
Per-listing chat: who may read and write, and whether there is something new.

While a listing is active anyone signed in may ask questions.  Once it is
sold only the seller and the buyer keep access.  Unread flags compare the
newest message written by someone else against the device-local watermark.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from .errors import PermissionDenied, ValidationError
from .models import Identity, Listing, Message, epoch_millis, utcnow
from .stores import MessageStore
from .subscriptions import Subscription
from .watermark import WatermarkStore

logger = logging.getLogger(__name__)

UnreadCallback = Callable[[Dict[str, bool]], None]


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------
def is_participant(listing: Listing, viewer: Optional[Identity]) -> bool:
    return viewer is not None and viewer.uid in listing.participants()


def can_read(listing: Listing, viewer: Optional[Identity]) -> bool:
    if viewer is None:
        return False
    return not listing.is_sold or is_participant(listing, viewer)


def can_send(listing: Listing, viewer: Optional[Identity]) -> bool:
    return can_read(listing, viewer)


def ordered(messages: Iterable[Message]) -> List[Message]:
    """Oldest first; messages with equal timestamps keep their relative order."""
    return sorted(messages, key=lambda m: m.created_at)


def visible_messages(listing: Listing, viewer: Optional[Identity], messages: Iterable[Message]) -> List[Message]:
    if not can_read(listing, viewer):
        return []
    return ordered(messages)


def latest_foreign_millis(messages: Iterable[Message], viewer_uid: str) -> int:
    return max((m.created_ms for m in messages if m.sender_uid != viewer_uid), default=0)


def is_unread(listing: Listing, latest_foreign: int, watermark: Optional[int]) -> bool:
    """Only sold listings carry an unread badge."""
    if not listing.is_sold:
        return False
    return latest_foreign > (watermark or 0)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------
class ChatAccessGate:
    def __init__(
        self,
        messages: MessageStore,
        watermarks: WatermarkStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.messages = messages
        self.watermarks = watermarks
        self.clock = clock

    can_read = staticmethod(can_read)
    can_send = staticmethod(can_send)

    async def send(self, listing: Listing, sender: Optional[Identity], text: str) -> Message:
        """
        Append ``text`` to the listing's chat as ``sender`` and move the
        sender's watermark up to the new message.
        """
        if sender is None:
            raise PermissionDenied("sign-in required to chat")
        if not text or not text.strip():
            raise ValidationError("message text is empty")
        if not can_send(listing, sender):
            raise PermissionDenied(
                f"{sender.uid} is not a participant of sold listing {listing.id}",
                notice="この取引は終了しています。",
            )

        message = Message(
            text=text,
            created_at=self.clock(),
            sender_uid=sender.uid,
            sender_display_name=sender.display_name,
            sender_photo=sender.photo_url,
        )
        message = await self.messages.append(listing.id, message)
        self.watermarks.set(listing.id, message.created_ms)
        logger.debug(f"Message {message.id} sent on {listing.id} by {sender.uid}")
        return message

    def mark_seen(self, listing_id: str) -> int:
        seen_at = epoch_millis(self.clock())
        self.watermarks.set(listing_id, seen_at)
        return seen_at

    async def compute_unread(self, listing: Listing, viewer: Identity) -> bool:
        """One-shot unread check against the current message log."""
        if not listing.is_sold:
            return False
        latest = latest_foreign_millis(await self.messages.list_ordered(listing.id), viewer.uid)
        return is_unread(listing, latest, self.watermarks.get(listing.id))

    def watch_messages(self, listing_id: str, callback: Callable[[List[Message]], None]) -> Subscription:
        return self.messages.subscribe_ordered(listing_id, lambda msgs: callback(ordered(msgs)))

    def watch_unread(self, listing: Listing, viewer: Identity, callback: Callable[[bool], None]) -> Subscription:
        """Live unread flag of a single listing."""
        tracker = UnreadTracker(self, viewer.uid, lambda flags: callback(flags.get(listing.id, False)))
        tracker.track([listing])
        return Subscription(tracker.close, name=f"unread:{listing.id}")

    def unread_tracker(self, viewer: Identity, callback: UnreadCallback) -> "UnreadTracker":
        return UnreadTracker(self, viewer.uid, callback)


class UnreadTracker:
    """
    Unread flags for a whole set of listings from one aggregated message
    feed, instead of one subscription per listing.

    Call :meth:`track` with the latest listing snapshot; the feed is only
    re-created when the set of sold listing IDs changes.  Watermark updates
    re-evaluate the flags without touching the feed.
    """

    def __init__(self, gate: ChatAccessGate, viewer_uid: str, callback: UnreadCallback):
        self.gate = gate
        self.viewer_uid = viewer_uid
        self.callback = callback
        self.flags: Dict[str, bool] = {}
        self._listings: Dict[str, Listing] = {}
        self._latest: Dict[str, int] = {}
        self._sold_ids: FrozenSet[str] = frozenset()
        self._feed: Optional[Subscription] = None
        self._watermark_sub = gate.watermarks.subscribe(self._on_watermark)
        self._closed = False

    def track(self, listings: Iterable[Listing]) -> None:
        if self._closed:
            return
        self._listings = {listing.id: listing for listing in listings}
        sold_ids = frozenset(lid for lid, listing in self._listings.items() if listing.is_sold)
        if sold_ids != self._sold_ids or self._feed is None:
            self._sold_ids = sold_ids
            self._resubscribe()
        else:
            self._evaluate()

    def _resubscribe(self) -> None:
        if self._feed is not None:
            self._feed.release()
            self._feed = None
        self._latest = {}
        if not self._sold_ids:
            self._evaluate()
            return
        logger.debug(f"Unread feed for {len(self._sold_ids)} sold listings of {self.viewer_uid}")
        self._feed = self.gate.messages.subscribe_latest_foreign(
            self._sold_ids, self.viewer_uid, self._on_latest
        )

    def _on_latest(self, latest: Dict[str, int]) -> None:
        self._latest = dict(latest)
        self._evaluate()

    def _on_watermark(self, listing_id: str, timestamp: int) -> None:
        if listing_id in self._listings:
            self._evaluate()

    def _evaluate(self) -> None:
        flags = {
            listing_id: is_unread(
                listing,
                self._latest.get(listing_id, 0),
                self.gate.watermarks.get(listing_id),
            )
            for listing_id, listing in self._listings.items()
        }
        if flags != self.flags:
            self.flags = flags
            self.callback(dict(flags))

    def close(self) -> None:
        self._closed = True
        if self._feed is not None:
            self._feed.release()
            self._feed = None
        self._watermark_sub.release()
