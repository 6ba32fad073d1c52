import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from google.api_core import exceptions as gcp_exceptions

from campus_market import (
    FirestoreListingStore,
    FirestoreMessageStore,
    Listing,
    ListingFilter,
    Message,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
)
from campus_market.models import epoch_millis
from campus_market.stores import IN_FILTER_LIMIT

T0 = datetime(2025, 4, 1, 9, 0, tzinfo=timezone.utc)


def _snapshot(doc_id, data, path=None, update_time=None):
    snap = MagicMock()
    snap.exists = True
    snap.id = doc_id
    snap.to_dict.return_value = dict(data)
    snap.update_time = update_time
    snap.reference.path = path or f"products/{doc_id}"
    return snap


def _listing_data(**overrides):
    data = {
        "name": "Fridge",
        "price": 3000,
        "category": "冷蔵庫",
        "image": "img",
        "sellerId": "seller-1",
        "isSold": False,
        "createdAt": T0,
    }
    data.update(overrides)
    return data


def _message_snapshot(doc_id, listing_id, uid, seconds):
    return _snapshot(
        doc_id,
        {"text": "hi", "uid": uid, "createdAt": T0 + timedelta(seconds=seconds), "listingId": listing_id},
        path=f"products/{listing_id}/messages/{doc_id}",
    )


def _chainable_query(snapshots=()):
    query = MagicMock()
    query.where.return_value = query
    query.order_by.return_value = query
    query.limit.return_value = query

    async def _stream():
        for snap in snapshots:
            yield snap

    query.stream.side_effect = _stream
    return query


@pytest.fixture
def listing_doc(firestore_db):
    doc_ref = MagicMock()
    doc_ref.update = AsyncMock()
    doc_ref.delete = AsyncMock()
    firestore_db.client.collection.return_value.document.return_value = doc_ref
    return doc_ref


@pytest.fixture
def listings(firestore_db):
    return FirestoreListingStore(firestore_db)


@pytest.fixture
def messages(firestore_db):
    return FirestoreMessageStore(firestore_db)


# -----------------------------------------------------------------------------
# Listings
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_mark_sold_is_conditional_on_read_snapshot(firestore_db, listings, listing_doc):
    read_at = T0 + timedelta(minutes=5)
    listing_doc.get = AsyncMock(return_value=_snapshot("l1", _listing_data(), update_time=read_at))
    option = firestore_db.client.write_option.return_value

    sold = await listings.mark_sold("l1", "buyer-1")

    firestore_db.client.write_option.assert_called_once_with(last_update_time=read_at)
    listing_doc.update.assert_awaited_once_with({"isSold": True, "buyerId": "buyer-1"}, option=option)
    assert sold.is_sold is True
    assert sold.buyer_id == "buyer-1"


@pytest.mark.asyncio
async def test_mark_sold_rejects_sold_listing(listings, listing_doc):
    listing_doc.get = AsyncMock(
        return_value=_snapshot("l1", _listing_data(isSold=True, buyerId="buyer-1"))
    )

    with pytest.raises(PermissionDenied) as excinfo:
        await listings.mark_sold("l1", "buyer-2")

    assert excinfo.value.notice == "売り切れました"
    listing_doc.update.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [gcp_exceptions.FailedPrecondition, gcp_exceptions.Aborted])
async def test_lost_buy_race_is_permission_denied(listings, listing_doc, error):
    listing_doc.get = AsyncMock(return_value=_snapshot("l1", _listing_data(), update_time=T0))
    listing_doc.update.side_effect = error("precondition failed")

    with pytest.raises(PermissionDenied):
        await listings.mark_sold("l1", "buyer-2")


@pytest.mark.asyncio
async def test_mark_sold_missing_listing(listings, listing_doc):
    missing = MagicMock()
    missing.exists = False
    listing_doc.get = AsyncMock(return_value=missing)

    with pytest.raises(NotFound):
        await listings.mark_sold("gone", "buyer-1")


@pytest.mark.asyncio
async def test_backend_failures_become_store_unavailable(listings, listing_doc):
    listing_doc.get = AsyncMock(side_effect=gcp_exceptions.ServiceUnavailable("backend down"))

    with pytest.raises(StoreUnavailable):
        await listings.get_one("l1")


@pytest.mark.asyncio
async def test_delete_of_missing_document_is_not_found(listings, listing_doc):
    listing_doc.delete.side_effect = gcp_exceptions.NotFound("no document")

    with pytest.raises(NotFound):
        await listings.delete("gone")


@pytest.mark.asyncio
async def test_update_writes_selected_fields(listings, listing_doc):
    listing_doc.get = AsyncMock(return_value=_snapshot("l1", _listing_data()))

    updated = await listings.update("l1", {"price": 2500})

    listing_doc.update.assert_awaited_once_with({"price": 2500})
    assert updated.price == 2500


@pytest.mark.asyncio
async def test_update_refuses_sale_fields(listings, listing_doc):
    listing_doc.get = AsyncMock(return_value=_snapshot("l1", _listing_data(isSold=True, buyerId="buyer-1")))

    for fields in ({"is_sold": False}, {"buyer_id": None}, {"isSold": False, "price": 1}):
        with pytest.raises(PermissionDenied):
            await listings.update("l1", fields)

    listing_doc.update.assert_not_awaited()


@pytest.mark.asyncio
async def test_retry_deadline_becomes_store_unavailable(listings, listing_doc):
    listing_doc.get = AsyncMock(
        side_effect=gcp_exceptions.RetryError("Deadline of 60s exceeded", gcp_exceptions.DeadlineExceeded("slow"))
    )

    with pytest.raises(StoreUnavailable) as excinfo:
        await listings.get_one("l1")

    assert "Deadline of 60s exceeded" in str(excinfo.value)


@pytest.mark.asyncio
async def test_failed_precondition_outside_a_buy_is_store_unavailable(firestore_db, listings):
    query = _chainable_query()
    query.stream.side_effect = gcp_exceptions.FailedPrecondition("The query requires an index")
    firestore_db.client.collection.return_value = query

    with pytest.raises(StoreUnavailable) as excinfo:
        await listings.query_many(ListingFilter.for_category("冷蔵庫"))

    assert not isinstance(excinfo.value, PermissionDenied)
    assert "requires an index" in str(excinfo.value)


@pytest.mark.asyncio
async def test_query_many_filters_category_newest_first(firestore_db, listings):
    query = _chainable_query([_snapshot("l2", _listing_data()), _snapshot("l1", _listing_data())])
    firestore_db.client.collection.return_value = query

    result = await listings.query_many(ListingFilter.for_category("冷蔵庫"))

    assert [l.id for l in result] == ["l2", "l1"]
    assert query.where.call_count == 1
    assert query.where.call_args.kwargs["filter"].field_path == "category"
    query.order_by.assert_called_once_with("createdAt", direction="DESCENDING")


@pytest.mark.asyncio
async def test_all_category_has_no_filter(firestore_db, listings):
    query = _chainable_query()
    firestore_db.client.collection.return_value = query

    assert await listings.query_many(ListingFilter.for_category("すべて")) == []
    query.where.assert_not_called()


# -----------------------------------------------------------------------------
# Messages
# -----------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_append_stamps_listing_id(firestore_db, messages):
    doc_ref = MagicMock()
    doc_ref.id = "m1"
    doc_ref.set = AsyncMock()
    firestore_db.client.collection.return_value.document.return_value = doc_ref

    message = await messages.append("l1", Message(text="hi", created_at=T0, sender_uid="buyer-1"))

    firestore_db.client.collection.assert_called_with("products/l1/messages")
    assert doc_ref.set.await_args.args[0]["listingId"] == "l1"
    assert message.id == "m1"


@pytest.mark.asyncio
async def test_purge_deletes_every_message(firestore_db, messages):
    query = _chainable_query([_message_snapshot("m1", "l1", "u", 1), _message_snapshot("m2", "l1", "u", 2)])
    message_doc = MagicMock()
    message_doc.delete = AsyncMock()
    query.document.return_value = message_doc
    firestore_db.client.collection.return_value = query

    assert await messages.purge("l1") == 2
    assert message_doc.delete.await_count == 2


@pytest.mark.asyncio
async def test_latest_foreign_without_listings(messages):
    received = []
    messages.subscribe_latest_foreign([], "seller-1", received.append)
    assert received == [{}]


@pytest.mark.asyncio
async def test_latest_foreign_merges_chunks(firestore_db, messages):
    query = _chainable_query()
    firestore_db.watch_client.collection_group.return_value = query
    listing_ids = [f"l{i:02d}" for i in range(IN_FILTER_LIMIT + 1)]

    received = []
    subscription = messages.subscribe_latest_foreign(listing_ids, "seller-1", received.append)

    firestore_db.watch_client.collection_group.assert_called_with("messages")
    chunk_sizes = [len(c.kwargs["filter"].value) for c in query.where.call_args_list]
    assert chunk_sizes == [IN_FILTER_LIMIT, 1]
    first_chunk, second_chunk = [c.args[0] for c in query.on_snapshot.call_args_list]

    first_chunk(
        [
            _message_snapshot("m1", "l00", "buyer-1", 10),
            _message_snapshot("m2", "l00", "seller-1", 20),
            _message_snapshot("m3", "l05", "buyer-2", 5),
        ],
        [],
        None,
    )
    await asyncio.sleep(0)
    # Nothing until every chunk reported once
    assert received == []

    second_chunk([_message_snapshot("m4", "l30", "buyer-3", 7)], [], None)
    await asyncio.sleep(0)

    latest = received[-1]
    assert latest["l00"] == epoch_millis(T0 + timedelta(seconds=10))
    assert latest["l05"] == epoch_millis(T0 + timedelta(seconds=5))
    assert latest["l30"] == epoch_millis(T0 + timedelta(seconds=7))
    assert latest["l01"] == 0
    assert len(latest) == len(listing_ids)

    subscription.release()
    assert query.on_snapshot.return_value.unsubscribe.call_count == 2
