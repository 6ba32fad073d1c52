import logging
from datetime import datetime
from typing import Callable, List, Optional, Union

from .chat import ChatAccessGate
from .config import MarketConfig
from .enums import Category
from .firestore_client import FirestoreDB
from .identity import FirebaseAuthProvider, IdentityProvider, InMemoryIdentityProvider
from .lifecycle import ListingLifecycleController
from .memory_store import InMemoryListingStore, InMemoryMessageStore
from .models import Identity, utcnow
from .session import Session
from .stores import FirestoreListingStore, FirestoreMessageStore, ListingStore, MessageStore
from .views import CatalogView, ListingDetailView, Notify, SellerDashboard, View
from .watermark import FileWatermarkStore, MemoryWatermarkStore, WatermarkStore

logger = logging.getLogger(__name__)


def watermarks_from_config(config: MarketConfig) -> WatermarkStore:
    if config.watermark_path:
        return FileWatermarkStore(config.watermark_path)
    return MemoryWatermarkStore()


class MarketApp:
    """
    Application shell.

    Wires stores, the identity provider and the two core controllers
    together, owns the :class:`Session`, and closes every open view when the
    user signs out.
    """

    def __init__(
        self,
        config: MarketConfig,
        provider: IdentityProvider,
        listings: ListingStore,
        messages: MessageStore,
        watermarks: WatermarkStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.provider = provider
        self.session = Session(provider)
        self.lifecycle = ListingLifecycleController(
            listings, messages, clock=clock, strict_checks=config.strict_listing_checks
        )
        self.chat = ChatAccessGate(messages, watermarks, clock=clock)
        self._views: List[View] = []
        self._session_sub = self.session.observe(self._on_identity)

    @classmethod
    def from_config(cls, config: Optional[MarketConfig] = None, credentials=None, http_client=None) -> "MarketApp":
        """Firestore and Firebase Authentication backed app."""
        config = config or MarketConfig.from_env()
        db = FirestoreDB.from_config(config, credentials=credentials)
        return cls(
            config,
            FirebaseAuthProvider.from_config(config, http_client=http_client),
            FirestoreListingStore(db),
            FirestoreMessageStore(db),
            watermarks_from_config(config),
        )

    @classmethod
    def in_memory(cls, config: Optional[MarketConfig] = None, clock: Callable[[], datetime] = utcnow) -> "MarketApp":
        config = config or MarketConfig()
        return cls(
            config,
            InMemoryIdentityProvider(config.campus_email_domain),
            InMemoryListingStore(),
            InMemoryMessageStore(),
            watermarks_from_config(config),
            clock=clock,
        )

    def _on_identity(self, identity: Optional[Identity]) -> None:
        if identity is None:
            logger.info(f"Signed out, closing {len(self._views)} views")
            self.close_views()

    def _register(self, view: View) -> View:
        self._views = [v for v in self._views if not v.closed]
        self._views.append(view)
        return view

    def catalog(self, category: Union[str, Category] = Category.ALL, notify: Optional[Notify] = None) -> CatalogView:
        return self._register(CatalogView(self.session, self.lifecycle, category, notify))

    def listing_detail(self, listing_id: str, notify: Optional[Notify] = None) -> ListingDetailView:
        return self._register(
            ListingDetailView(self.session, self.lifecycle, self.chat, listing_id, notify)
        )

    def seller_dashboard(self, notify: Optional[Notify] = None) -> SellerDashboard:
        return self._register(SellerDashboard(self.session, self.lifecycle, self.chat, notify))

    def close_views(self) -> None:
        views, self._views = self._views, []
        for view in views:
            view.close()

    def close(self) -> None:
        self.close_views()
        self._session_sub.release()
        self.session.close()
