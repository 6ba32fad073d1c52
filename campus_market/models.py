"""
Documents stored by the marketplace.

Field aliases are the camelCase keys of the existing ``products`` collection
and its ``messages`` sub-collections, so data written by the web client and by
this package is interchangeable.
"""

from datetime import datetime, timezone
from typing import Optional

from .enums import LifecycleState
from .firestore_model import BaseFirestoreModel
from .pydantic_compat import BaseModel, Field, PydanticVersion

if PydanticVersion >= 2:
    from pydantic import ConfigDict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def epoch_millis(moment: Optional[datetime]) -> int:
    """Milliseconds since the epoch; naive datetimes are taken as UTC."""
    if moment is None:
        return 0
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


class Identity(BaseModel):
    """Signed-in user as reported by the identity provider."""

    uid: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    email: Optional[str] = None

    if PydanticVersion >= 2:
        model_config = ConfigDict(frozen=True)
    else:
        class Config:
            allow_mutation = False


class Listing(BaseFirestoreModel):
    class Settings:
        name = "products"

    name: str
    price: int
    category: str
    image: str
    seller_id: str = Field(alias="sellerId")
    is_sold: bool = Field(default=False, alias="isSold")
    buyer_id: Optional[str] = Field(default=None, alias="buyerId")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    @property
    def state(self) -> LifecycleState:
        return LifecycleState.SOLD if self.is_sold else LifecycleState.ACTIVE

    def participants(self) -> set:
        return {uid for uid in (self.seller_id, self.buyer_id) if uid}


class Message(BaseFirestoreModel):
    class Settings:
        name = "messages"
        parent = Listing

    text: str
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    sender_uid: str = Field(alias="uid")
    sender_display_name: Optional[str] = Field(default=None, alias="sender")
    sender_photo: Optional[str] = Field(default=None, alias="senderPhoto")
    # Not in older documents; the collection-group unread watch filters on it
    listing_id: Optional[str] = Field(default=None, alias="listingId")

    @property
    def created_ms(self) -> int:
        return epoch_millis(self.created_at)


MARKET_MODELS = [Listing, Message]


def init_market_odm(database, document_models: Optional[list] = None) -> None:
    """Inject ``database`` into the document models and build their query fields."""
    for model in document_models or MARKET_MODELS:
        model.initialize_db(database)
        model.initialize_fields()
        model.register()
