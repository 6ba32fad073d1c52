import asyncio
import logging
from typing import Any, AsyncGenerator, Callable, ClassVar, List, Optional, Tuple, Type, Union

from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from .enums import FirestoreOperators, OrderByDirection
from .firestore_client import FirestoreDB
from .firestore_fields import QueryField
from .pydantic_compat import (
    BaseModel,
    Field,
    PrivateAttr,
    PydanticVersion,
    get_model_fields,
    model_dump_compat,
    model_validate_compat,
)
from .subscriptions import Subscription, on_loop

if PydanticVersion >= 2:
    from pydantic import ConfigDict

# Alias for the first element in order-by tuple
FieldType = Union[str, QueryField]
FieldOrderType = Tuple[FieldType, OrderByDirection]
FilterType = Tuple[FieldType, Union[str, FirestoreOperators], Any]
OrderByType = Optional[Union[List[Union[FieldType, FieldOrderType]], FieldType, FieldOrderType]]
ParentType = Optional[Union["BaseFirestoreModel", str]]

logger = logging.getLogger(__name__)


class BaseFirestoreModel(BaseModel):
    """
    Base mapping between a pydantic model and one Firestore document.

    ``Settings.name`` is the collection name.  ``Settings.parent`` turns the
    model into a sub-collection of another model; such documents need a
    ``parent`` (a model instance or a document path) for every operation and
    remember it in ``_parent_path`` once loaded or saved.
    """

    # --------------------------------------------------------------------------
    # Default field (document ID)
    # --------------------------------------------------------------------------
    id: Optional[str] = Field(default=None)

    # --------------------------------------------------------------------------
    # Class level state, injected by init_market_odm
    # --------------------------------------------------------------------------
    _db: ClassVar[Optional[FirestoreDB]] = None
    _registered_models: ClassVar[List[type]] = []

    _parent_path: Optional[str] = PrivateAttr(default=None)
    _update_time: Any = PrivateAttr(default=None)

    class Settings:
        name: str = "BaseCollection"  # Override in subclasses
        parent = None

    if PydanticVersion >= 2:
        model_config = ConfigDict(populate_by_name=True)
    else:
        class Config:
            allow_population_by_field_name = True
            underscore_attrs_are_private = True

    # --------------------------------------------------------------------------
    # Registration
    # --------------------------------------------------------------------------
    @classmethod
    def initialize_fields(cls) -> None:
        """Expose every field as a :class:`QueryField` on the class."""
        for field_name, field_info in get_model_fields(cls).items():
            alias = (
                FieldPath.document_id() if field_name == "id"
                else (field_info.alias or field_name)
            )
            setattr(cls, field_name, QueryField(alias, attr_name=field_name))

    @classmethod
    def initialize_db(cls, db: FirestoreDB):
        cls._db = db

    @classmethod
    def register(cls) -> None:
        if cls not in BaseFirestoreModel._registered_models:
            BaseFirestoreModel._registered_models.append(cls)

    @classmethod
    def _require_db(cls) -> FirestoreDB:
        if not cls._db:
            raise RuntimeError("Database must be initialized before using the model.")
        return cls._db

    # --------------------------------------------------------------------------
    # Path resolution
    # --------------------------------------------------------------------------
    @classmethod
    def get_collection_name(cls) -> str:
        if hasattr(cls, "Settings") and hasattr(cls.Settings, "name"):
            return cls.Settings.name
        return cls.__name__

    @property
    def collection_name(self) -> str:
        return self.get_collection_name()

    @classmethod
    def get_parent_model(cls) -> Optional[type]:
        return getattr(getattr(cls, "Settings", None), "parent", None)

    @classmethod
    def _resolve_parent_path(cls, parent: ParentType) -> Optional[str]:
        if parent is None:
            return None
        if isinstance(parent, str):
            return parent.strip("/")
        return parent._get_doc_path()

    @classmethod
    def _get_collection_path(cls, parent_path: Optional[str] = None) -> str:
        if cls.get_parent_model() is None:
            return cls.get_collection_name()
        if not parent_path:
            raise RuntimeError(
                f"{cls.__name__} is a subcollection and requires a parent."
            )
        return f"{parent_path}/{cls.get_collection_name()}"

    @classmethod
    def doc_path_for(cls, doc_id: str, parent: ParentType = None) -> str:
        return f"{cls._get_collection_path(cls._resolve_parent_path(parent))}/{doc_id}"

    def _get_doc_path(self) -> str:
        if not self.id:
            raise ValueError("Cannot get document path without an ID.")
        return f"{self._get_collection_path(self._parent_path)}/{self.id}"

    @classmethod
    def _get_child_models(cls) -> List[type]:
        return [
            model for model in BaseFirestoreModel._registered_models
            if model.get_parent_model() is cls
        ]

    def subcollection(self, child_cls: Type["BaseFirestoreModel"]):
        from .subcollection_accessor import SubCollectionAccessor

        return SubCollectionAccessor(self._get_doc_path(), type(self), child_cls)

    @classmethod
    def subcollection_of(cls, doc_id: str, child_cls: Type["BaseFirestoreModel"]):
        """Accessor for ``child_cls`` under the document ``doc_id`` without loading it."""
        from .subcollection_accessor import SubCollectionAccessor

        return SubCollectionAccessor(cls.doc_path_for(doc_id), cls, child_cls)

    # --------------------------------------------------------------------------
    # Snapshot conversion
    # --------------------------------------------------------------------------
    @classmethod
    def from_snapshot(cls, snapshot, parent_path: Optional[str] = None) -> "BaseFirestoreModel":
        data = snapshot.to_dict() or {}
        data["id"] = snapshot.id
        instance = model_validate_compat(cls, data)
        instance._parent_path = parent_path
        instance._update_time = getattr(snapshot, "update_time", None)
        return instance

    @staticmethod
    def _parent_path_from_reference(reference) -> Optional[str]:
        # ".../{parent}/{collection}/{id}" -> ".../{parent}"
        parts = reference.path.split("/")
        return "/".join(parts[:-2]) or None

    @property
    def update_time(self):
        """Server update time of the snapshot this instance was read from."""
        return self._update_time

    def to_document(self, exclude_none=True, by_alias=True, exclude_unset=False, include=None) -> dict:
        return model_dump_compat(
            self,
            exclude={"id"},
            include=include,
            exclude_unset=exclude_unset,
            exclude_none=exclude_none,
            by_alias=by_alias,
        )

    # --------------------------------------------------------------------------
    # CRUD operations: create/update/delete
    # --------------------------------------------------------------------------
    async def save(self, parent: ParentType = None, exclude_none=True, by_alias=True) -> "BaseFirestoreModel":
        """
        Create the document.  A fresh ID is assigned when none is set; an
        explicit ID that already exists is rejected.
        """
        db_client = self._require_db().client
        if parent is not None:
            self._parent_path = self._resolve_parent_path(parent)

        collection_ref = db_client.collection(self._get_collection_path(self._parent_path))
        data_to_save = self.to_document(exclude_none=exclude_none, by_alias=by_alias)

        if not self.id:
            doc_ref = collection_ref.document()
            self.id = doc_ref.id
        else:
            doc_ref = collection_ref.document(self.id)
            if (await doc_ref.get()).exists:
                raise RuntimeError("Error creating object: provided ID already exists.")

        logger.debug(f"Save: {collection_ref} - id={self.id}")
        await doc_ref.set(data_to_save)
        return self

    async def update(
        self,
        include: Optional[set] = None,
        parent: ParentType = None,
        last_update_time=None,
        exclude_none=True,
        by_alias=True,
    ) -> "BaseFirestoreModel":
        """
        Write the selected fields to an existing document.

        With ``last_update_time`` the write only applies if the document was
        not modified since that snapshot; otherwise Firestore raises
        ``FailedPrecondition``.
        """
        db = self._require_db()
        if not self.id:
            raise ValueError("Cannot update a document without an ID.")
        if parent is not None:
            self._parent_path = self._resolve_parent_path(parent)

        doc_ref = db.client.collection(self._get_collection_path(self._parent_path)).document(self.id)
        updates = self.to_document(
            include=include, exclude_none=exclude_none, by_alias=by_alias
        )

        logger.debug(f"Update: {self.collection_name} - id={self.id}, updates={updates}")
        if not updates:
            return self
        if last_update_time is not None:
            option = db.client.write_option(last_update_time=last_update_time)
            await doc_ref.update(updates, option=option)
        else:
            await doc_ref.update(updates)
        return self

    async def delete(self, cascade: bool = False) -> None:
        """
        Delete the document.  With ``cascade`` every registered child
        sub-collection is emptied first, depth first.
        """
        db_client = self._require_db().client
        if not self.id:
            raise ValueError("Cannot delete a document without an ID.")

        if cascade:
            doc_path = self._get_doc_path()
            for child_cls in self._get_child_models():
                async for child in child_cls.find(parent=doc_path):
                    await child.delete(cascade=True)

        doc_ref = db_client.collection(self._get_collection_path(self._parent_path)).document(self.id)
        await doc_ref.delete()

    # --------------------------------------------------------------------------
    # Reads
    # --------------------------------------------------------------------------
    @classmethod
    async def get(cls, doc_id: str, parent: ParentType = None) -> Optional["BaseFirestoreModel"]:
        db_client = cls._require_db().client
        parent_path = cls._resolve_parent_path(parent)

        doc_ref = db_client.collection(cls._get_collection_path(parent_path)).document(doc_id)
        doc_snap = await doc_ref.get()
        if doc_snap.exists:
            return cls.from_snapshot(doc_snap, parent_path)
        return None

    @classmethod
    async def exists(cls, doc_id: str, parent: ParentType = None) -> bool:
        db_client = cls._require_db().client
        parent_path = cls._resolve_parent_path(parent)

        doc_ref = db_client.collection(cls._get_collection_path(parent_path)).document(doc_id)
        return (await doc_ref.get()).exists

    @classmethod
    async def count(cls, filters: List[FilterType] = None, parent: ParentType = None) -> int:
        db_client = cls._require_db().client
        parent_path = cls._resolve_parent_path(parent)

        query = cls._build_query(
            db_client.collection(cls._get_collection_path(parent_path)), filters=filters
        )
        try:
            count_snapshot = await query.count().get()
            return count_snapshot[0][0].value
        except AttributeError:
            logger.warning("Firestore: Performing count by fetching all items with empty select")
            docs = await query.select([]).get()
            return len(docs)

    @classmethod
    async def find(
        cls,
        filters: List[FilterType] = None,
        order_by: OrderByType = None,
        limit: Optional[int] = None,
        parent: ParentType = None,
    ) -> AsyncGenerator["BaseFirestoreModel", None]:
        db_client = cls._require_db().client
        parent_path = cls._resolve_parent_path(parent)

        query = cls._build_query(
            db_client.collection(cls._get_collection_path(parent_path)),
            filters=filters,
            order_by=order_by,
            limit=limit,
        )
        async for doc in query.stream():
            yield cls.from_snapshot(doc, parent_path)

    @classmethod
    async def find_one(
        cls,
        filters: List[FilterType] = None,
        order_by: OrderByType = None,
        parent: ParentType = None,
    ) -> Optional["BaseFirestoreModel"]:
        async for obj in cls.find(filters=filters, order_by=order_by, limit=1, parent=parent):
            return obj
        return None

    @classmethod
    async def collection_group_find(
        cls,
        filters: List[FilterType] = None,
        order_by: OrderByType = None,
        limit: Optional[int] = None,
    ) -> AsyncGenerator["BaseFirestoreModel", None]:
        """Query every collection named ``Settings.name``, whatever its parent."""
        db_client = cls._require_db().client
        query = cls._build_query(
            db_client.collection_group(cls.get_collection_name()),
            filters=filters,
            order_by=order_by,
            limit=limit,
        )
        async for doc in query.stream():
            yield cls.from_snapshot(doc, cls._parent_path_from_reference(doc.reference))

    # --------------------------------------------------------------------------
    # Realtime listeners
    # --------------------------------------------------------------------------
    @classmethod
    def watch(
        cls,
        doc_id: str,
        callback: Callable[[Optional["BaseFirestoreModel"]], None],
        parent: ParentType = None,
    ) -> Subscription:
        """
        Listen to one document.  ``callback`` runs on the calling event loop
        with the current model, or ``None`` once the document is gone.
        """
        watch_client = cls._require_db().watch_client
        parent_path = cls._resolve_parent_path(parent)
        subscription = Subscription(name=f"{cls.__name__}:{doc_id}")
        deliver = subscription.guard(callback)

        def _on_snapshot(doc_snapshots, changes, read_time):
            snap = doc_snapshots[0] if doc_snapshots else None
            if snap is None or not snap.exists:
                deliver(None)
            else:
                deliver(cls.from_snapshot(snap, parent_path))

        doc_ref = watch_client.collection(cls._get_collection_path(parent_path)).document(doc_id)
        watch = doc_ref.on_snapshot(on_loop(asyncio.get_running_loop(), _on_snapshot))
        subscription.bind(watch.unsubscribe)
        return subscription

    @classmethod
    def watch_query(
        cls,
        callback: Callable[[List["BaseFirestoreModel"]], None],
        filters: List[FilterType] = None,
        order_by: OrderByType = None,
        limit: Optional[int] = None,
        parent: ParentType = None,
    ) -> Subscription:
        """Listen to a query; ``callback`` receives the full result list each time."""
        watch_client = cls._require_db().watch_client
        parent_path = cls._resolve_parent_path(parent)
        query = cls._build_query(
            watch_client.collection(cls._get_collection_path(parent_path)),
            filters=filters,
            order_by=order_by,
            limit=limit,
        )
        return cls._listen(query, callback, lambda snap: parent_path)

    @classmethod
    def collection_group_watch(
        cls,
        callback: Callable[[List["BaseFirestoreModel"]], None],
        filters: List[FilterType] = None,
        order_by: OrderByType = None,
    ) -> Subscription:
        watch_client = cls._require_db().watch_client
        query = cls._build_query(
            watch_client.collection_group(cls.get_collection_name()),
            filters=filters,
            order_by=order_by,
        )
        return cls._listen(
            query, callback, lambda snap: cls._parent_path_from_reference(snap.reference)
        )

    @classmethod
    def _listen(cls, query, callback, parent_of) -> Subscription:
        subscription = Subscription(name=f"{cls.__name__}:query")
        deliver = subscription.guard(callback)

        def _on_snapshot(doc_snapshots, changes, read_time):
            deliver([cls.from_snapshot(snap, parent_of(snap)) for snap in doc_snapshots])

        watch = query.on_snapshot(on_loop(asyncio.get_running_loop(), _on_snapshot))
        subscription.bind(watch.unsubscribe)
        return subscription

    # --------------------------------------------------------------------------
    # Internal query builder
    # --------------------------------------------------------------------------
    @classmethod
    def _build_query(
        cls,
        query,
        filters: List[FilterType] = None,
        order_by: OrderByType = None,
        limit: Optional[int] = None,
    ):
        for (field_name, op, value) in filters or []:
            op_string = op.value if isinstance(op, FirestoreOperators) else op
            query = query.where(filter=FieldFilter(str(field_name), op_string, value))

        if order_by:
            if not isinstance(order_by, list):
                order_by = [order_by]
            for order_by_field in order_by:
                if isinstance(order_by_field, tuple):
                    field, direction = order_by_field
                    query = query.order_by(str(field), direction=str(direction))
                else:
                    query = query.order_by(str(order_by_field))

        if limit is not None:
            query = query.limit(limit)
        return query
