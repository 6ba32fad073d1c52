from enum import Enum


class FirestoreOperators(str, Enum):
    LT = "<"
    LTE = "<="
    EQ = "=="
    NE = "!="
    GT = ">"
    GTE = ">="
    IN = "in"
    NOT_IN = "not-in"


class OrderByDirection(str, Enum):
    DESCENDING = "DESCENDING"
    ASCENDING = "ASCENDING"

    def __str__(self):
        return self.value


class Category(str, Enum):
    """Listing categories shown as filter chips in the catalog."""

    ALL = "すべて"
    FRIDGE = "冷蔵庫"
    MICROWAVE = "電子レンジ"
    WASHER = "洗濯機"
    FOOD = "食品"
    OTHER = "その他"

    def __str__(self):
        return self.value

    @classmethod
    def listable(cls):
        """Categories a seller may pick (everything except ``ALL``)."""
        return [c for c in cls if c is not cls.ALL]


class LifecycleState(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"
