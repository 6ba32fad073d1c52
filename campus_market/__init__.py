# campus_market/__init__.py
from .app import MarketApp
from .chat import ChatAccessGate, UnreadTracker, can_read, can_send
from .config import MarketConfig
from .enums import Category, FirestoreOperators, LifecycleState, OrderByDirection
from .errors import MarketError, NotFound, PermissionDenied, StoreUnavailable, ValidationError
from .firestore_client import FirestoreDB
from .firestore_fields import QueryField
from .firestore_model import BaseFirestoreModel
from .identity import FirebaseAuthProvider, InMemoryIdentityProvider
from .lifecycle import ListingLifecycleController, can_buy, can_delete
from .memory_store import InMemoryListingStore, InMemoryMessageStore
from .models import Identity, Listing, Message, init_market_odm
from .session import Session
from .stores import FirestoreListingStore, FirestoreMessageStore, ListingFilter
from .subcollection_accessor import SubCollectionAccessor
from .subscriptions import Subscription, SubscriptionSet
from .views import CatalogView, ListingDetailView, SellerDashboard
from .watermark import FileWatermarkStore, MemoryWatermarkStore

__all__ = [
    "BaseFirestoreModel",
    "CatalogView",
    "Category",
    "ChatAccessGate",
    "FileWatermarkStore",
    "FirebaseAuthProvider",
    "FirestoreDB",
    "FirestoreListingStore",
    "FirestoreMessageStore",
    "FirestoreOperators",
    "Identity",
    "InMemoryIdentityProvider",
    "InMemoryListingStore",
    "InMemoryMessageStore",
    "LifecycleState",
    "Listing",
    "ListingDetailView",
    "ListingFilter",
    "ListingLifecycleController",
    "MarketApp",
    "MarketConfig",
    "MarketError",
    "MemoryWatermarkStore",
    "Message",
    "NotFound",
    "OrderByDirection",
    "PermissionDenied",
    "QueryField",
    "SellerDashboard",
    "Session",
    "StoreUnavailable",
    "SubCollectionAccessor",
    "Subscription",
    "SubscriptionSet",
    "UnreadTracker",
    "ValidationError",
    "can_buy",
    "can_delete",
    "can_read",
    "can_send",
    "init_market_odm",
]
