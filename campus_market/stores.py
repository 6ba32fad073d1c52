"""
Listing and message stores.

The lifecycle controller and the chat gate only see the :class:`ListingStore`
and :class:`MessageStore` protocols.  This module holds the Firestore-backed
implementations; :mod:`campus_market.memory_store` has in-process ones with
the same realtime behaviour.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from .enums import Category
from .errors import NotFound, PermissionDenied, translate_store_errors
from .firestore_client import FirestoreDB
from .models import Listing, Message, init_market_odm
from .pydantic_compat import BaseModel
from .subscriptions import Subscription

logger = logging.getLogger(__name__)

# Firestore caps the number of values in an ``in`` filter
IN_FILTER_LIMIT = 30

ListingCallback = Callable[[Optional[Listing]], None]
ListingsCallback = Callable[[List[Listing]], None]
MessagesCallback = Callable[[List[Message]], None]
LatestCallback = Callable[[Dict[str, int]], None]

# Written by mark_sold only; sold is terminal and buyerId is set iff isSold
SALE_FIELDS = frozenset({"is_sold", "buyer_id", "isSold", "buyerId"})


class ListingFilter(BaseModel):
    """Filter for listing queries; results are always newest first."""

    category: Optional[str] = None
    seller_id: Optional[str] = None

    @classmethod
    def for_category(cls, category) -> "ListingFilter":
        category = str(category) if category is not None else None
        if category is None or category == Category.ALL.value:
            return cls()
        return cls(category=category)

    def matches(self, listing: Listing) -> bool:
        if self.category is not None and listing.category != self.category:
            return False
        if self.seller_id is not None and listing.seller_id != self.seller_id:
            return False
        return True

    def to_filters(self) -> list:
        filters = []
        if self.category is not None:
            filters.append(Listing.category == self.category)
        if self.seller_id is not None:
            filters.append(Listing.seller_id == self.seller_id)
        return filters


def latest_foreign_timestamps(
    messages: Iterable[Message], listing_ids: Iterable[str], exclude_uid: str
) -> Dict[str, int]:
    """
    Latest ``createdAt`` (epoch ms) per listing among messages not written by
    ``exclude_uid``.  Listings without such messages map to 0.
    """
    latest = {listing_id: 0 for listing_id in listing_ids}
    for message in messages:
        if message.listing_id not in latest or message.sender_uid == exclude_uid:
            continue
        latest[message.listing_id] = max(latest[message.listing_id], message.created_ms)
    return latest


def check_update_fields(listing_id: str, fields: dict) -> None:
    sale_fields = SALE_FIELDS.intersection(fields)
    if sale_fields:
        raise PermissionDenied(
            f"listing {listing_id}: {sorted(sale_fields)} can only change through a sale"
        )


class ListingStore(Protocol):
    async def create(self, listing: Listing) -> Listing: ...

    async def get_one(self, listing_id: str) -> Optional[Listing]: ...

    async def query_many(self, listing_filter: ListingFilter) -> List[Listing]: ...

    def subscribe_one(self, listing_id: str, callback: ListingCallback) -> Subscription: ...

    def subscribe_many(self, listing_filter: ListingFilter, callback: ListingsCallback) -> Subscription: ...

    async def update(self, listing_id: str, fields: dict) -> Listing: ...

    async def mark_sold(self, listing_id: str, buyer_id: str) -> Listing: ...

    async def delete(self, listing_id: str) -> None: ...


class MessageStore(Protocol):
    async def append(self, listing_id: str, message: Message) -> Message: ...

    async def list_ordered(self, listing_id: str) -> List[Message]: ...

    def subscribe_ordered(self, listing_id: str, callback: MessagesCallback) -> Subscription: ...

    def subscribe_latest_foreign(
        self, listing_ids: Iterable[str], exclude_uid: str, callback: LatestCallback
    ) -> Subscription: ...

    async def purge(self, listing_id: str) -> int: ...


# ---------------------------------------------------------------------------
# Firestore
# ---------------------------------------------------------------------------
class FirestoreListingStore:
    """Listings in the ``products`` collection."""

    def __init__(self, db: FirestoreDB):
        self.db = db
        init_market_odm(db)

    @translate_store_errors("create listing")
    async def create(self, listing: Listing) -> Listing:
        return await listing.save()

    @translate_store_errors("get listing")
    async def get_one(self, listing_id: str) -> Optional[Listing]:
        return await Listing.get(listing_id)

    @translate_store_errors("query listings")
    async def query_many(self, listing_filter: ListingFilter) -> List[Listing]:
        return [
            listing async for listing in Listing.find(
                filters=listing_filter.to_filters(),
                order_by=Listing.created_at.desc(),
            )
        ]

    def subscribe_one(self, listing_id: str, callback: ListingCallback) -> Subscription:
        return Listing.watch(listing_id, callback)

    def subscribe_many(self, listing_filter: ListingFilter, callback: ListingsCallback) -> Subscription:
        return Listing.watch_query(
            callback,
            filters=listing_filter.to_filters(),
            order_by=Listing.created_at.desc(),
        )

    @translate_store_errors("update listing")
    async def update(self, listing_id: str, fields: dict) -> Listing:
        check_update_fields(listing_id, fields)
        listing = await Listing.get(listing_id)
        if listing is None:
            raise NotFound(f"listing {listing_id} does not exist")
        for name, value in fields.items():
            setattr(listing, name, value)
        return await listing.update(include=set(fields))

    @translate_store_errors("buy listing", conditional=True)
    async def mark_sold(self, listing_id: str, buyer_id: str) -> Listing:
        """
        Flip ``isSold`` only if the document is unchanged since it was read
        unsold; a concurrent buyer makes the precondition fail.
        """
        listing = await Listing.get(listing_id)
        if listing is None:
            raise NotFound(f"listing {listing_id} does not exist")
        if listing.is_sold:
            raise PermissionDenied(f"listing {listing_id} is already sold", notice="売り切れました")

        read_at = listing.update_time
        listing.is_sold = True
        listing.buyer_id = buyer_id
        await listing.update(include={"is_sold", "buyer_id"}, last_update_time=read_at)
        logger.info(f"Listing {listing_id} sold to {buyer_id}")
        return listing

    @translate_store_errors("delete listing")
    async def delete(self, listing_id: str) -> None:
        await self.db.client.collection(Listing.get_collection_name()).document(listing_id).delete()


class FirestoreMessageStore:
    """Chat threads in ``products/{listingId}/messages``."""

    def __init__(self, db: FirestoreDB):
        self.db = db
        init_market_odm(db)

    @translate_store_errors("send message")
    async def append(self, listing_id: str, message: Message) -> Message:
        message.listing_id = listing_id
        return await Listing.subcollection_of(listing_id, Message).add(message)

    @translate_store_errors("load messages")
    async def list_ordered(self, listing_id: str) -> List[Message]:
        return await Listing.subcollection_of(listing_id, Message).all(
            order_by=Message.created_at.asc()
        )

    def subscribe_ordered(self, listing_id: str, callback: MessagesCallback) -> Subscription:
        return Listing.subcollection_of(listing_id, Message).watch(
            callback, order_by=Message.created_at.asc()
        )

    def subscribe_latest_foreign(
        self, listing_ids: Iterable[str], exclude_uid: str, callback: LatestCallback
    ) -> Subscription:
        """
        One collection-group watch per chunk of ``IN_FILTER_LIMIT`` listing
        ids; results of all chunks are merged before ``callback`` fires.
        """
        listing_ids = sorted(set(listing_ids))
        subscription = Subscription(name=f"unread:{exclude_uid}")
        if not listing_ids:
            callback({})
            return subscription

        deliver = subscription.guard(callback)
        chunks = [
            listing_ids[i:i + IN_FILTER_LIMIT]
            for i in range(0, len(listing_ids), IN_FILTER_LIMIT)
        ]
        latest: Dict[str, int] = {}
        pending = set(range(len(chunks)))

        def _on_chunk(index: int, chunk: List[str]):
            def _update(messages: List[Message]):
                latest.update(latest_foreign_timestamps(messages, chunk, exclude_uid))
                pending.discard(index)
                if not pending:
                    deliver(dict(latest))

            return _update

        watches = [
            Message.collection_group_watch(
                _on_chunk(index, chunk), filters=[Message.listing_id.in_(chunk)]
            )
            for index, chunk in enumerate(chunks)
        ]

        def _release():
            for watch in watches:
                watch.release()

        subscription.bind(_release)
        return subscription

    @translate_store_errors("delete messages")
    async def purge(self, listing_id: str) -> int:
        deleted = await Listing.subcollection_of(listing_id, Message).clear()
        logger.debug(f"Purged {deleted} messages of listing {listing_id}")
        return deleted
