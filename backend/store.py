"""MongoDB access: identifier format checks and the generic EntityStore."""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from errors import DuplicateEntity, InvalidIdentifier

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[0-9a-f]{24}$")

ASCENDING = 1
DESCENDING = -1

# Never writable through a partial update.
PROTECTED_FIELDS = ("_id", "createdAt")


def is_valid_identifier(token: Any) -> bool:
    return isinstance(token, str) and IDENTIFIER_PATTERN.fullmatch(token) is not None


def ensure_identifier(token: Any) -> ObjectId:
    """Convert a client token into an ObjectId, rejecting anything that is not
    exactly 24 lowercase hex characters."""
    if not is_valid_identifier(token):
        raise InvalidIdentifier(f"Invalid identifier: {token!r}")
    return ObjectId(token)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def connect_database(mongo_url: str, db_name: str) -> Tuple[AsyncIOMotorClient, AsyncIOMotorDatabase]:
    # Motor connects on the first operation, not here.
    client = AsyncIOMotorClient(mongo_url, tz_aware=True)
    return client, client[db_name]


class EntityStore:
    """Repository over a single named collection.

    Performs no ownership checks; callers resolve access with
    ``ownership.OwnershipResolver`` first.
    """

    def __init__(self, collection: AsyncIOMotorCollection, immutable_fields: Iterable[str] = ()):
        self.collection = collection
        self.immutable_fields = tuple(PROTECTED_FIELDS) + tuple(immutable_fields)

    @property
    def name(self) -> str:
        return self.collection.name

    async def get_by_id(self, entity_id: str) -> Optional[dict]:
        return await self.collection.find_one({"_id": ensure_identifier(entity_id)})

    async def find_one(self, filter_: dict) -> Optional[dict]:
        return await self.collection.find_one(filter_)

    async def find(
        self,
        filter_: dict,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: Optional[int] = None,
    ) -> List[dict]:
        cursor = self.collection.find(filter_, sort=list(sort) if sort else None, limit=limit or 0)
        return await cursor.to_list(length=limit)

    async def insert(self, doc: dict) -> str:
        """Stamp timestamps and ``_id`` on ``doc`` in place, insert it and
        return the new id."""
        now = utc_now()
        doc["createdAt"] = now
        doc["updatedAt"] = now
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError as exc:
            raise DuplicateEntity(f"Duplicate {self.name} entry") from exc
        doc.setdefault("_id", result.inserted_id)
        return str(result.inserted_id)

    async def update(self, entity_id: str, fields: dict) -> Optional[dict]:
        """Merge ``fields`` into the document atomically and return the new state.

        Returns None when the document no longer exists.
        """
        object_id = ensure_identifier(entity_id)
        update_data = {k: v for k, v in fields.items() if k not in self.immutable_fields}
        dropped = set(fields) - set(update_data)
        if dropped:
            logger.warning(f"Ignoring immutable fields {sorted(dropped)} on {self.name} update")
        update_data["updatedAt"] = utc_now()
        return await self.collection.find_one_and_update(
            {"_id": object_id},
            {"$set": update_data},
            return_document=ReturnDocument.AFTER,
        )

    async def delete(self, entity_id: str) -> bool:
        result = await self.collection.delete_one({"_id": ensure_identifier(entity_id)})
        return result.deleted_count > 0


def serialize_document(doc: dict, hidden: Iterable[str] = ()) -> dict:
    """Expose ``_id`` as ``id`` and drop hidden fields."""
    hidden = set(hidden)
    out = {k: v for k, v in doc.items() if k != "_id" and k not in hidden}
    if "_id" in doc:
        out = {"id": str(doc["_id"]), **out}
    return out
