from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock

from campus_market import (
    ChatAccessGate,
    FirestoreDB,
    Identity,
    InMemoryListingStore,
    InMemoryMessageStore,
    ListingLifecycleController,
    MemoryWatermarkStore,
    init_market_odm,
)
from campus_market.models import epoch_millis


class FakeClock:
    """Deterministic clock; every test moves time forward explicitly."""

    def __init__(self, start: datetime = datetime(2025, 4, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    @property
    def millis(self) -> int:
        return epoch_millis(self.now)


# -----------------------------------------------------------------------------
# Identities
# -----------------------------------------------------------------------------
@pytest.fixture
def seller():
    return Identity(uid="seller-1", display_name="Sato", email="sato@s.kyushu-u.ac.jp")


@pytest.fixture
def buyer():
    return Identity(
        uid="buyer-1",
        display_name="Tanaka",
        photo_url="https://example.com/tanaka.png",
        email="tanaka@s.kyushu-u.ac.jp",
    )


@pytest.fixture
def stranger():
    return Identity(uid="viewer-9", display_name="Suzuki", email="suzuki@s.kyushu-u.ac.jp")


# -----------------------------------------------------------------------------
# In-memory backends
# -----------------------------------------------------------------------------
@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def listing_store():
    return InMemoryListingStore()


@pytest.fixture
def message_store():
    return InMemoryMessageStore()


@pytest.fixture
def watermarks():
    return MemoryWatermarkStore()


@pytest.fixture
def lifecycle(listing_store, message_store, clock):
    return ListingLifecycleController(listing_store, message_store, clock=clock)


@pytest.fixture
def gate(message_store, watermarks, clock):
    return ChatAccessGate(message_store, watermarks, clock=clock)


@pytest.fixture
def confirm_yes():
    return lambda listing: True


@pytest.fixture
def make_listing(lifecycle, seller, clock):
    """Create a listing as ``seller`` one second after the previous one."""

    async def _make(name="Fridge", price=3000, category="冷蔵庫", image="data:image/png;base64,AAAA", owner=None):
        clock.advance()
        return await lifecycle.create(owner or seller, name, price, category, image)

    return _make


# -----------------------------------------------------------------------------
# Mocked Firestore
# -----------------------------------------------------------------------------
@pytest.fixture
def firestore_db():
    db = FirestoreDB.__new__(FirestoreDB)
    db.project_id = "test-project"
    db.database = None
    db.credentials = None
    db._emulator_host = None
    db.client = MagicMock()
    db._watch_client = MagicMock()
    return db


@pytest.fixture
def initialized_models(firestore_db):
    init_market_odm(firestore_db)
    return firestore_db
