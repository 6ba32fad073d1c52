"""
Listing lifecycle: create, buy, delete, and the realtime listing feeds.

A listing is ``Active`` until one buy flips it to ``Sold``; nothing leads
back.  The permission predicates are plain functions so a server-side rule
layer can import and reuse them as they are.
"""

import inspect
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Union

from .enums import Category, LifecycleState
from .errors import MarketError, NotFound, PermissionDenied, ValidationError
from .models import Identity, Listing, utcnow
from .stores import ListingFilter, ListingStore, MessageStore
from .subscriptions import Subscription

logger = logging.getLogger(__name__)

Confirm = Callable[[Listing], Union[bool, Awaitable[bool]]]


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------
def lifecycle_state(listing: Listing) -> LifecycleState:
    return listing.state


def is_seller(listing: Listing, identity: Optional[Identity]) -> bool:
    return identity is not None and identity.uid == listing.seller_id


def can_delete(listing: Listing, requester: Optional[Identity]) -> bool:
    return is_seller(listing, requester) and not listing.is_sold


def can_buy(listing: Listing, buyer: Optional[Identity], strict: bool = False) -> bool:
    """
    Any signed-in user may buy an active listing.  The seller is not
    excluded unless ``strict`` is set.
    """
    if buyer is None or listing.is_sold:
        return False
    if strict and buyer.uid == listing.seller_id:
        return False
    return True


async def _confirmed(confirm: Optional[Confirm], listing: Listing) -> bool:
    if confirm is None:
        return False
    answer = confirm(listing)
    if inspect.isawaitable(answer):
        answer = await answer
    return bool(answer)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------
class ListingLifecycleController:
    """
    Owns every state transition of a listing.

    Parameters
    ----------
    listings :
        Listing store (Firestore or in-memory).
    messages :
        Message store; when given, deleting a listing also deletes its chat.
    clock :
        Source of ``createdAt`` values.
    strict_checks :
        Reject unknown categories, negative prices and self-purchases.
    """

    def __init__(
        self,
        listings: ListingStore,
        messages: Optional[MessageStore] = None,
        clock: Callable[[], datetime] = utcnow,
        strict_checks: bool = False,
    ):
        self.listings = listings
        self.messages = messages
        self.clock = clock
        self.strict_checks = strict_checks

    def _validate_new_listing(self, name, price, category, image) -> int:
        if not name or not str(name).strip():
            raise ValidationError("listing name is required")
        if price is None or str(price).strip() == "":
            raise ValidationError("listing price is required")
        if not image:
            raise ValidationError("listing image is required")
        try:
            price = int(price)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"price must be a whole number, got {price!r}") from exc

        if self.strict_checks:
            if price < 0:
                raise ValidationError("price must not be negative")
            if category not in {c.value for c in Category.listable()}:
                raise ValidationError(f"unknown category {category!r}")
        return price

    async def create(
        self,
        seller: Optional[Identity],
        name: str,
        price,
        category: Union[str, Category] = Category.OTHER,
        image: Optional[str] = None,
    ) -> Listing:
        if seller is None:
            raise PermissionDenied("sign-in required to sell")
        category = str(category)
        price = self._validate_new_listing(name, price, category, image)

        listing = Listing(
            name=name,
            price=price,
            category=category,
            image=image,
            seller_id=seller.uid,
            is_sold=False,
            created_at=self.clock(),
        )
        listing = await self.listings.create(listing)
        logger.info(f"Listing {listing.id} created by {seller.uid} in {category}")
        return listing

    async def get(self, listing_id: str) -> Listing:
        listing = await self.listings.get_one(listing_id)
        if listing is None:
            raise NotFound(f"listing {listing_id} not found")
        return listing

    async def buy(self, buyer: Optional[Identity], listing_id: str, confirm: Confirm) -> Optional[Listing]:
        """
        Sell ``listing_id`` to ``buyer``.  Returns ``None`` when the buyer
        declines the confirmation, the sold listing otherwise.
        """
        listing = await self.get(listing_id)
        if buyer is None:
            raise PermissionDenied("sign-in required to buy")
        if not can_buy(listing, buyer, strict=self.strict_checks):
            if listing.is_sold:
                raise PermissionDenied(f"listing {listing_id} is already sold", notice="売り切れました")
            raise PermissionDenied(f"{buyer.uid} may not buy listing {listing_id}")
        if not await _confirmed(confirm, listing):
            logger.debug(f"Buy of {listing_id} cancelled by {buyer.uid}")
            return None

        # The store re-checks isSold atomically; a lost race raises PermissionDenied
        sold = await self.listings.mark_sold(listing_id, buyer.uid)
        logger.info(f"Listing {listing_id} bought by {buyer.uid}")
        return sold

    async def delete(self, requester: Optional[Identity], listing_id: str, confirm: Optional[Confirm] = None) -> bool:
        """
        Remove an active listing on behalf of its seller.  Returns ``False``
        when the confirmation is declined.
        """
        listing = await self.get(listing_id)
        if not can_delete(listing, requester):
            raise PermissionDenied(
                f"{requester.uid if requester else 'anonymous'} may not delete listing {listing_id}"
            )
        if confirm is not None and not await _confirmed(confirm, listing):
            return False

        await self.listings.delete(listing_id)
        logger.info(f"Listing {listing_id} deleted by {requester.uid}")
        if self.messages is not None:
            # The listing is gone either way; a failed purge leaves an unreachable thread
            try:
                await self.messages.purge(listing_id)
            except MarketError as exc:
                logger.warning(f"Messages of deleted listing {listing_id} were not purged: {exc}")
        return True

    # --------------------------------------------------------------------------
    # Feeds
    # --------------------------------------------------------------------------
    async def fetch(self, category: Union[str, Category, None] = Category.ALL) -> List[Listing]:
        return await self.listings.query_many(ListingFilter.for_category(category))

    async def fetch_by_seller(self, seller_uid: str) -> List[Listing]:
        return await self.listings.query_many(ListingFilter(seller_id=seller_uid))

    def list(self, category: Union[str, Category, None], callback: Callable[[List[Listing]], None]) -> Subscription:
        """Live listings of ``category`` (all of them for ``Category.ALL``), newest first."""
        return self.listings.subscribe_many(ListingFilter.for_category(category), callback)

    def list_by_seller(self, seller_uid: str, callback: Callable[[List[Listing]], None]) -> Subscription:
        return self.listings.subscribe_many(ListingFilter(seller_id=seller_uid), callback)

    def watch(self, listing_id: str, callback: Callable[[Optional[Listing]], None]) -> Subscription:
        return self.listings.subscribe_one(listing_id, callback)
