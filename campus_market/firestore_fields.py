from typing import Any, List, Tuple

from .enums import FirestoreOperators, OrderByDirection

FilterTuple = Tuple[str, FirestoreOperators, Any]


class QueryField:
    """
    Class-level stand-in for a model field, used to spell queries.

    >>> Listing.category == "食品"
    ('category', FirestoreOperators.EQ, '食品')
    >>> Listing.created_at.desc()
    ('createdAt', OrderByDirection.DESCENDING)

    The stored name is the field alias, so filters always target the
    camelCase keys that live in Firestore.  On an instance the real value is
    returned instead.
    """

    def __init__(self, field_name: str, attr_name: str = None):
        self.field_name = field_name
        self.attr_name = attr_name or field_name

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return instance.__dict__.get(self.attr_name)

    def __str__(self) -> str:
        return self.field_name

    __repr__ = __str__

    def __hash__(self) -> int:
        return hash(self.field_name)

    def __eq__(self, other) -> FilterTuple:  # type: ignore[override]
        return (self.field_name, FirestoreOperators.EQ, other)

    def __ne__(self, other) -> FilterTuple:  # type: ignore[override]
        return (self.field_name, FirestoreOperators.NE, other)

    def __lt__(self, other) -> FilterTuple:
        return (self.field_name, FirestoreOperators.LT, other)

    def __le__(self, other) -> FilterTuple:
        return (self.field_name, FirestoreOperators.LTE, other)

    def __gt__(self, other) -> FilterTuple:
        return (self.field_name, FirestoreOperators.GT, other)

    def __ge__(self, other) -> FilterTuple:
        return (self.field_name, FirestoreOperators.GTE, other)

    def in_(self, values: List[Any]) -> FilterTuple:
        return (self.field_name, FirestoreOperators.IN, list(values))

    def not_in_(self, values: List[Any]) -> FilterTuple:
        return (self.field_name, FirestoreOperators.NOT_IN, list(values))

    def asc(self) -> Tuple[str, OrderByDirection]:
        return (self.field_name, OrderByDirection.ASCENDING)

    def desc(self) -> Tuple[str, OrderByDirection]:
        return (self.field_name, OrderByDirection.DESCENDING)
