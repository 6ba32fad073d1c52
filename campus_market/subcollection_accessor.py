"""
Bound accessor for a sub-collection under one parent document.

``Listing.subcollection_of(listing_id, Message).watch(cb)`` is sugar over
``Message.watch_query(cb, parent="products/<listing_id>")``.
"""

from typing import TYPE_CHECKING, Callable, List, Optional, Type

from .subscriptions import Subscription

if TYPE_CHECKING:
    from .firestore_model import BaseFirestoreModel


class SubCollectionAccessor:
    def __init__(
        self,
        parent_path: str,
        parent_cls: Type["BaseFirestoreModel"],
        child_cls: Type["BaseFirestoreModel"],
    ):
        if child_cls.get_parent_model() is not parent_cls:
            raise ValueError(
                f"{child_cls.__name__} does not declare "
                f"Settings.parent = {parent_cls.__name__}"
            )
        self.parent_path = parent_path
        self._child_cls = child_cls

    async def add(self, doc: "BaseFirestoreModel") -> "BaseFirestoreModel":
        return await doc.save(parent=self.parent_path)

    async def get(self, doc_id: str) -> Optional["BaseFirestoreModel"]:
        return await self._child_cls.get(doc_id, parent=self.parent_path)

    async def find(self, filters=None, order_by=None, limit=None):
        async for doc in self._child_cls.find(
            filters=filters, order_by=order_by, limit=limit, parent=self.parent_path
        ):
            yield doc

    async def all(self, order_by=None) -> List["BaseFirestoreModel"]:
        return [doc async for doc in self.find(order_by=order_by)]

    async def count(self, filters=None) -> int:
        return await self._child_cls.count(filters=filters or [], parent=self.parent_path)

    def watch(self, callback: Callable, filters=None, order_by=None) -> Subscription:
        return self._child_cls.watch_query(
            callback, filters=filters, order_by=order_by, parent=self.parent_path
        )

    async def clear(self) -> int:
        """Delete every document in the sub-collection; returns how many went."""
        deleted = 0
        async for doc in self.find():
            await doc.delete(cascade=True)
            deleted += 1
        return deleted
