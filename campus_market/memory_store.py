"""
In-process listing and message stores.

They follow the realtime contract of the Firestore stores: a subscriber gets
the current state right away and a fresh snapshot after every change that
touches its scope.  Everything runs on the caller's thread, so callbacks fire
synchronously inside the write that caused them.
"""

import logging
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .errors import NotFound, PermissionDenied
from .models import Listing, Message
from .pydantic_compat import model_copy_compat
from .stores import (
    LatestCallback,
    ListingCallback,
    ListingFilter,
    ListingsCallback,
    MessagesCallback,
    check_update_fields,
    latest_foreign_timestamps,
)
from .subscriptions import Subscription

logger = logging.getLogger(__name__)


def _auto_id() -> str:
    # Same length as Firestore auto IDs
    return uuid.uuid4().hex[:20]


class _Listeners:
    """Registered callbacks keyed by subscription."""

    def __init__(self):
        self._entries: Dict[Subscription, Tuple[object, Callable]] = {}

    def add(self, key, callback: Callable, name: str) -> Subscription:
        subscription = Subscription(name=name)
        self._entries[subscription] = (key, subscription.guard(callback))
        subscription.bind(lambda: self._entries.pop(subscription, None))
        return subscription

    def items(self) -> List[Tuple[object, Callable]]:
        return list(self._entries.values())


class InMemoryListingStore:
    def __init__(self):
        self._docs: Dict[str, Listing] = {}
        self._doc_listeners = _Listeners()
        self._query_listeners = _Listeners()

    def _snapshot(self, listing_filter: ListingFilter) -> List[Listing]:
        matching = [
            model_copy_compat(listing)
            for listing in self._docs.values()
            if listing_filter.matches(listing)
        ]
        return sorted(matching, key=lambda listing: listing.created_at, reverse=True)

    def _notify(self, listing_id: str) -> None:
        current = self._docs.get(listing_id)
        for key, callback in self._doc_listeners.items():
            if key == listing_id:
                callback(model_copy_compat(current) if current else None)
        for listing_filter, callback in self._query_listeners.items():
            callback(self._snapshot(listing_filter))

    async def create(self, listing: Listing) -> Listing:
        if listing.id and listing.id in self._docs:
            raise RuntimeError("Error creating object: provided ID already exists.")
        listing.id = listing.id or _auto_id()
        self._docs[listing.id] = model_copy_compat(listing)
        logger.debug(f"Created listing {listing.id}")
        self._notify(listing.id)
        return listing

    async def get_one(self, listing_id: str) -> Optional[Listing]:
        listing = self._docs.get(listing_id)
        return model_copy_compat(listing) if listing else None

    async def query_many(self, listing_filter: ListingFilter) -> List[Listing]:
        return self._snapshot(listing_filter)

    def subscribe_one(self, listing_id: str, callback: ListingCallback) -> Subscription:
        subscription = self._doc_listeners.add(listing_id, callback, f"Listing:{listing_id}")
        current = self._docs.get(listing_id)
        callback(model_copy_compat(current) if current else None)
        return subscription

    def subscribe_many(self, listing_filter: ListingFilter, callback: ListingsCallback) -> Subscription:
        subscription = self._query_listeners.add(listing_filter, callback, "Listing:query")
        callback(self._snapshot(listing_filter))
        return subscription

    async def update(self, listing_id: str, fields: dict) -> Listing:
        check_update_fields(listing_id, fields)
        if listing_id not in self._docs:
            raise NotFound(f"listing {listing_id} does not exist")
        self._docs[listing_id] = model_copy_compat(self._docs[listing_id], update=fields)
        self._notify(listing_id)
        return model_copy_compat(self._docs[listing_id])

    async def mark_sold(self, listing_id: str, buyer_id: str) -> Listing:
        # Check and write happen without yielding, so the swap is atomic
        listing = self._docs.get(listing_id)
        if listing is None:
            raise NotFound(f"listing {listing_id} does not exist")
        if listing.is_sold:
            raise PermissionDenied(f"listing {listing_id} is already sold", notice="売り切れました")
        self._docs[listing_id] = model_copy_compat(
            listing, update={"is_sold": True, "buyer_id": buyer_id}
        )
        logger.info(f"Listing {listing_id} sold to {buyer_id}")
        self._notify(listing_id)
        return model_copy_compat(self._docs[listing_id])

    async def delete(self, listing_id: str) -> None:
        if self._docs.pop(listing_id, None) is not None:
            self._notify(listing_id)


class InMemoryMessageStore:
    def __init__(self):
        self._threads: Dict[str, List[Message]] = {}
        self._thread_listeners = _Listeners()
        self._latest_listeners = _Listeners()

    def _ordered(self, listing_id: str) -> List[Message]:
        # sorted() is stable: equal timestamps keep insertion order
        return sorted(
            (model_copy_compat(m) for m in self._threads.get(listing_id, [])),
            key=lambda m: m.created_at,
        )

    def _latest(self, listing_ids: Tuple[str, ...], exclude_uid: str) -> Dict[str, int]:
        messages = [m for listing_id in listing_ids for m in self._threads.get(listing_id, [])]
        return latest_foreign_timestamps(messages, listing_ids, exclude_uid)

    def _notify(self, listing_id: str) -> None:
        for key, callback in self._thread_listeners.items():
            if key == listing_id:
                callback(self._ordered(listing_id))
        for (listing_ids, exclude_uid), callback in self._latest_listeners.items():
            if listing_id in listing_ids:
                callback(self._latest(listing_ids, exclude_uid))

    async def append(self, listing_id: str, message: Message) -> Message:
        message.id = message.id or _auto_id()
        message.listing_id = listing_id
        message._parent_path = Listing.doc_path_for(listing_id)
        self._threads.setdefault(listing_id, []).append(model_copy_compat(message))
        self._notify(listing_id)
        return message

    async def list_ordered(self, listing_id: str) -> List[Message]:
        return self._ordered(listing_id)

    def subscribe_ordered(self, listing_id: str, callback: MessagesCallback) -> Subscription:
        subscription = self._thread_listeners.add(listing_id, callback, f"Message:{listing_id}")
        callback(self._ordered(listing_id))
        return subscription

    def subscribe_latest_foreign(
        self, listing_ids: Iterable[str], exclude_uid: str, callback: LatestCallback
    ) -> Subscription:
        key = (tuple(sorted(set(listing_ids))), exclude_uid)
        subscription = self._latest_listeners.add(key, callback, f"unread:{exclude_uid}")
        callback(self._latest(*key))
        return subscription

    async def purge(self, listing_id: str) -> int:
        deleted = len(self._threads.pop(listing_id, []))
        self._notify(listing_id)
        return deleted
