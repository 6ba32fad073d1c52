"""
Fixtures for the Firestore emulator suite.

Every test in this directory is skipped unless ``FIRESTORE_EMULATOR_HOST``
points at a running emulator:

    FIRESTORE_EMULATOR_HOST=localhost:8080 pytest tests/integration
"""

import asyncio
import logging
import os

import httpx
import pytest
import pytest_asyncio

from campus_market import FirestoreDB, FirestoreListingStore, FirestoreMessageStore, init_market_odm

logger = logging.getLogger(__name__)

EMULATOR_HOST = os.environ.get("FIRESTORE_EMULATOR_HOST", "").strip()
DATABASE = os.environ.get("DATABASE", None) or None
# CI expands unset secrets to "", so fall back with ``or``
PROJECT_ID = os.environ.get("GOOGLE_CLOUD_PROJECT") or "student-market-test"


def pytest_collection_modifyitems(config, items):
    if EMULATOR_HOST:
        return
    skip = pytest.mark.skip(reason="FIRESTORE_EMULATOR_HOST is not set")
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(skip)


@pytest.fixture()
def firestore_db():
    """
    Function-scoped so each test gets a fresh AsyncClient bound to the
    current event loop.
    """
    return FirestoreDB(project_id=PROJECT_ID, database=DATABASE, emulator_host=EMULATOR_HOST)


@pytest.fixture()
def raw_client(firestore_db):
    return firestore_db.client


@pytest_asyncio.fixture(autouse=True)
async def clean_firestore(firestore_db):
    """Wipe the emulator before and after each test."""
    await _clear_emulator()
    yield
    await _clear_emulator()


async def _clear_emulator():
    db_name = DATABASE or "(default)"
    url = f"http://{EMULATOR_HOST}/emulator/v1/projects/{PROJECT_ID}/databases/{db_name}/documents"
    async with httpx.AsyncClient() as client:
        await client.delete(url)


@pytest.fixture()
def initialized_models(firestore_db):
    init_market_odm(firestore_db)
    return firestore_db


@pytest.fixture()
def listings(initialized_models):
    return FirestoreListingStore(initialized_models)


@pytest.fixture()
def messages(initialized_models):
    return FirestoreMessageStore(initialized_models)


@pytest.fixture()
def next_delivery():
    """
    Collect realtime callbacks and await the next one matching a predicate.

    Usage::

        deliveries = next_delivery()
        store.subscribe_many(f, deliveries.push)
        result = await deliveries.wait(lambda value: len(value) == 2)
    """

    class _Deliveries:
        def __init__(self):
            self.values = []
            self._changed = asyncio.Event()

        def push(self, value):
            self.values.append(value)
            self._changed.set()

        async def wait(self, predicate=lambda value: True, timeout=10.0):
            async def _wait():
                while True:
                    for value in reversed(self.values):
                        if predicate(value):
                            return value
                    self._changed.clear()
                    await self._changed.wait()

            return await asyncio.wait_for(_wait(), timeout)

    return _Deliveries
