"""
Listing and chat stores against the Firestore emulator, cross-checked with
the raw SDK.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from campus_market import (
    ChatAccessGate,
    Listing,
    ListingFilter,
    ListingLifecycleController,
    MemoryWatermarkStore,
    Message,
    PermissionDenied,
)
from campus_market.models import Identity, epoch_millis

pytestmark = pytest.mark.asyncio

T0 = datetime(2025, 4, 1, 9, 0, tzinfo=timezone.utc)
SELLER = Identity(uid="seller-1", display_name="Sato")
BUYER = Identity(uid="buyer-1", display_name="Tanaka")
OUTSIDER = Identity(uid="viewer-9", display_name="Suzuki")


def _at(seconds):
    return lambda: T0 + timedelta(seconds=seconds)


async def test_create_writes_camel_case_fields(listings, raw_client):
    lifecycle = ListingLifecycleController(listings, clock=_at(0))
    listing = await lifecycle.create(SELLER, "Fridge", "3000", "冷蔵庫", "data:image/png;base64,AAAA")

    doc = await raw_client.collection("products").document(listing.id).get()
    data = doc.to_dict()
    assert data["sellerId"] == "seller-1"
    assert data["isSold"] is False
    assert data["price"] == 3000
    assert "buyerId" not in data


async def test_category_query_newest_first(listings):
    for seconds, (name, category) in enumerate([("Fridge", "冷蔵庫"), ("Rice", "食品"), ("Mini fridge", "冷蔵庫")]):
        await ListingLifecycleController(listings, clock=_at(seconds)).create(SELLER, name, 100, category, "img")

    fridges = await listings.query_many(ListingFilter.for_category("冷蔵庫"))
    everything = await listings.query_many(ListingFilter.for_category("すべて"))

    assert [l.name for l in fridges] == ["Mini fridge", "Fridge"]
    assert [l.name for l in everything] == ["Mini fridge", "Rice", "Fridge"]


async def test_exactly_one_concurrent_buyer_wins(listings, messages):
    lifecycle = ListingLifecycleController(listings, messages, clock=_at(0))
    listing = await lifecycle.create(SELLER, "Fridge", 3000, "冷蔵庫", "img")

    results = await asyncio.gather(
        listings.mark_sold(listing.id, BUYER.uid),
        listings.mark_sold(listing.id, OUTSIDER.uid),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, Listing)]
    losers = [r for r in results if isinstance(r, PermissionDenied)]
    assert len(winners) == 1 and len(losers) == 1
    stored = await listings.get_one(listing.id)
    assert stored.is_sold is True
    assert stored.buyer_id == winners[0].buyer_id


async def test_delete_purges_chat(listings, messages, raw_client):
    lifecycle = ListingLifecycleController(listings, messages, clock=_at(0))
    gate = ChatAccessGate(messages, MemoryWatermarkStore(), clock=_at(1))
    listing = await lifecycle.create(SELLER, "Desk", 1000, "その他", "img")
    await gate.send(listing, BUYER, "まだありますか？")

    assert await lifecycle.delete(SELLER, listing.id) is True

    assert not (await raw_client.collection("products").document(listing.id).get()).exists
    remaining = [d async for d in raw_client.collection(f"products/{listing.id}/messages").stream()]
    assert remaining == []


async def test_realtime_feed_and_chat(listings, messages, next_delivery):
    lifecycle = ListingLifecycleController(listings, messages, clock=_at(0))
    listing = await lifecycle.create(SELLER, "Fridge", 3000, "冷蔵庫", "img")

    feed = next_delivery()
    feed_sub = lifecycle.list("冷蔵庫", feed.push)
    thread = next_delivery()
    thread_sub = messages.subscribe_ordered(listing.id, thread.push)

    await feed.wait(lambda value: [l.id for l in value] == [listing.id])

    await lifecycle.buy(BUYER, listing.id, lambda candidate: True)
    sold = await feed.wait(lambda value: value and value[0].is_sold)
    assert sold[0].buyer_id == BUYER.uid

    gate = ChatAccessGate(messages, MemoryWatermarkStore(), clock=_at(5))
    await gate.send(sold[0], BUYER, "いつ受け取れますか？")
    delivered = await thread.wait(lambda value: len(value) == 1)
    assert delivered[0].sender_display_name == "Tanaka"
    assert delivered[0].listing_id == listing.id

    feed_sub.release()
    thread_sub.release()


async def test_latest_foreign_watch(listings, messages, next_delivery):
    lifecycle = ListingLifecycleController(listings, messages, clock=_at(0))
    first = await lifecycle.create(SELLER, "Fridge", 3000, "冷蔵庫", "img")
    second = await lifecycle.create(SELLER, "Rice", 500, "食品", "img")

    latest = next_delivery()
    subscription = messages.subscribe_latest_foreign([first.id, second.id], SELLER.uid, latest.push)
    await latest.wait(lambda value: value == {first.id: 0, second.id: 0})

    await messages.append(first.id, Message(text="hi", created_at=T0 + timedelta(seconds=3), sender_uid=BUYER.uid))
    await messages.append(first.id, Message(text="own", created_at=T0 + timedelta(seconds=9), sender_uid=SELLER.uid))

    expected = epoch_millis(T0 + timedelta(seconds=3))
    value = await latest.wait(lambda value: value.get(first.id) == expected)
    assert value[second.id] == 0
    subscription.release()
