"""
Screen controllers without any rendering.

Each view owns the subscriptions it opens and drops all of them in
:meth:`View.close`.  User actions never raise: failures are turned into a
notice passed to ``notify`` and the action returns ``False``.
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

from .chat import ChatAccessGate, can_send, is_participant, visible_messages
from .enums import Category
from .errors import MarketError, NotFound
from .lifecycle import Confirm, ListingLifecycleController, can_buy, can_delete, is_seller
from .models import Listing, Message
from .session import Session
from .subscriptions import Subscription, SubscriptionSet

logger = logging.getLogger(__name__)

Notify = Callable[[str], None]


def _log_notice(message: str) -> None:
    logger.info(f"Notice: {message}")


class View:
    def __init__(self, session: Session, notify: Optional[Notify] = None):
        self.session = session
        self.notify = notify or _log_notice
        self.subscriptions = SubscriptionSet()
        self.loading = True
        self.closed = False

    async def _attempt(self, action: Awaitable):
        """Await ``action``; on a marketplace error notify the user and return ``(False, None)``."""
        try:
            return True, await action
        except MarketError as exc:
            logger.info(f"{type(self).__name__}: {type(exc).__name__}: {exc}")
            self.notify(exc.notice)
            return False, None

    def _fail_open(self, exc: MarketError) -> bool:
        self.loading = False
        self.notify(exc.notice)
        return False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.subscriptions.release_all()
        logger.debug(f"{type(self).__name__} closed")

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    async def open(self) -> bool:
        raise NotImplementedError


class CatalogView(View):
    """Listings of one category, newest first, plus the sell form."""

    def __init__(
        self,
        session: Session,
        lifecycle: ListingLifecycleController,
        category: Union[str, Category] = Category.ALL,
        notify: Optional[Notify] = None,
    ):
        super().__init__(session, notify)
        self.lifecycle = lifecycle
        self.category = str(category)
        self.listings: List[Listing] = []
        self._feed: Optional[Subscription] = None

    async def open(self) -> bool:
        if not self.session.signed_in:
            self.loading = False
            return False
        self._subscribe()
        return True

    def _subscribe(self) -> None:
        self.subscriptions.discard(self._feed)
        self.loading = True
        self._feed = self.subscriptions.add(self.lifecycle.list(self.category, self._on_listings))

    def _on_listings(self, listings: List[Listing]) -> None:
        self.listings = listings
        self.loading = False

    def select_category(self, category: Union[str, Category]) -> None:
        self.category = str(category)
        if self.session.signed_in and not self.closed:
            self._subscribe()

    async def sell(self, name: str, price, category: Union[str, Category], image: str) -> Optional[Listing]:
        ok, listing = await self._attempt(
            self.lifecycle.create(self.session.identity, name, price, category, image)
        )
        return listing if ok else None


class ListingDetailView(View):
    """
    One listing with its chat thread.

    Opening the view marks the chat as seen.  Every listing update
    re-applies the chat gate, so a non-participant loses the thread as soon
    as the sale arrives, whichever subscription fires first.
    """

    def __init__(
        self,
        session: Session,
        lifecycle: ListingLifecycleController,
        chat: ChatAccessGate,
        listing_id: str,
        notify: Optional[Notify] = None,
    ):
        super().__init__(session, notify)
        self.lifecycle = lifecycle
        self.chat = chat
        self.listing_id = listing_id
        self.listing: Optional[Listing] = None
        self.not_found = False
        self.messages: List[Message] = []
        self._all_messages: List[Message] = []

    async def open(self) -> bool:
        self.chat.mark_seen(self.listing_id)
        self.subscriptions.add(self.lifecycle.watch(self.listing_id, self._on_listing))
        self.subscriptions.add(self.chat.watch_messages(self.listing_id, self._on_messages))
        return True

    def _on_listing(self, listing: Optional[Listing]) -> None:
        self.loading = False
        self.listing = listing
        self.not_found = listing is None
        self._apply_gate()

    def _on_messages(self, messages: List[Message]) -> None:
        self._all_messages = messages
        self._apply_gate()

    def _apply_gate(self) -> None:
        if self.listing is None:
            self.messages = []
        else:
            self.messages = visible_messages(self.listing, self.session.identity, self._all_messages)

    # --------------------------------------------------------------------------
    # Derived flags
    # --------------------------------------------------------------------------
    @property
    def is_seller(self) -> bool:
        return self.listing is not None and is_seller(self.listing, self.session.identity)

    @property
    def is_participant(self) -> bool:
        return self.listing is not None and is_participant(self.listing, self.session.identity)

    @property
    def can_send(self) -> bool:
        return self.listing is not None and can_send(self.listing, self.session.identity)

    @property
    def can_delete(self) -> bool:
        return self.listing is not None and can_delete(self.listing, self.session.identity)

    @property
    def can_buy(self) -> bool:
        return self.listing is not None and can_buy(
            self.listing, self.session.identity, strict=self.lifecycle.strict_checks
        )

    @property
    def chat_closed(self) -> bool:
        return self.listing is not None and self.listing.is_sold and not self.is_participant

    @property
    def status_label(self) -> Optional[str]:
        if self.listing is None or not self.listing.is_sold:
            return None
        return "取引進行中" if self.is_participant else "売り切れました"

    def is_from_seller(self, message: Message) -> bool:
        return self.listing is not None and message.sender_uid == self.listing.seller_id

    # --------------------------------------------------------------------------
    # Actions
    # --------------------------------------------------------------------------
    async def buy(self, confirm: Confirm) -> bool:
        ok, sold = await self._attempt(
            self.lifecycle.buy(self.session.identity, self.listing_id, confirm)
        )
        if ok and sold is not None:
            self.notify("購入しました！")
        return ok and sold is not None

    async def delete(self, confirm: Optional[Confirm] = None) -> bool:
        ok, deleted = await self._attempt(
            self.lifecycle.delete(self.session.identity, self.listing_id, confirm)
        )
        return bool(ok and deleted)

    async def send(self, text: str) -> bool:
        if self.listing is None:
            return self._fail_open(NotFound(f"listing {self.listing_id} not loaded"))
        ok, _ = await self._attempt(self.chat.send(self.listing, self.session.identity, text))
        return ok


class SellerDashboard(View):
    """The signed-in user's own listings with unread badges on sold ones."""

    def __init__(
        self,
        session: Session,
        lifecycle: ListingLifecycleController,
        chat: ChatAccessGate,
        notify: Optional[Notify] = None,
    ):
        super().__init__(session, notify)
        self.lifecycle = lifecycle
        self.chat = chat
        self.listings: List[Listing] = []
        self.unread: Dict[str, bool] = {}
        self._tracker = None

    async def open(self) -> bool:
        try:
            identity = self.session.require_identity()
        except MarketError as exc:
            return self._fail_open(exc)

        self._tracker = self.chat.unread_tracker(identity, self._on_unread)
        self.subscriptions.add(Subscription(self._tracker.close, name="unread-tracker"))
        self.subscriptions.add(self.lifecycle.list_by_seller(identity.uid, self._on_listings))
        return True

    def _on_listings(self, listings: List[Listing]) -> None:
        self.listings = listings
        self.loading = False
        self._tracker.track(listings)

    def _on_unread(self, flags: Dict[str, bool]) -> None:
        self.unread = flags

    @property
    def has_unread(self) -> bool:
        return any(self.unread.values())

    async def update_profile(self, display_name: Optional[str] = None, photo_url: Optional[str] = None) -> bool:
        ok, _ = await self._attempt(
            self.session.update_profile(display_name=display_name, photo_url=photo_url)
        )
        if ok:
            self.notify("プロフィールを更新しました！")
        return ok

    async def sign_out(self) -> None:
        await self.session.sign_out()
