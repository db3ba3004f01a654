from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Type, TypeVar
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .base import BaseDBManager
from ..models.base import DBSerializableModel, utcnow
from ..models.ledger import LedgerEntry
from ..models.usage import UsageLogEntry
from ..models.user import UserAccount


TModel = TypeVar("TModel", bound=DBSerializableModel)


class MongoDBManager(BaseDBManager):
    """
    MongoDB implementation of BaseDBManager using motor (async driver).

    User documents are keyed by the identity uid in `_id`. All credit and
    subscription writes are single-document updates, which MongoDB applies
    atomically, so concurrent batches for one user cannot both pass the
    balance filter of `try_reserve_credits`.
    """

    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self._db = database

    @classmethod
    def from_client_uri(cls, uri: str, db_name: str) -> "MongoDBManager":
        client = AsyncIOMotorClient(uri)
        return cls(client[db_name])

    # Helper utilities
    @staticmethod
    def _prepare_insert(model: TModel) -> Dict[str, Any]:
        data = model.serialize_for_db()
        model_id = getattr(model, "id", None)
        if not model_id:
            model_id = uuid4().hex
            setattr(model, "id", model_id)
            data["id"] = model_id
        data["_id"] = model_id
        return data

    @staticmethod
    def _decode(model_cls: Type[TModel], doc: Optional[Mapping[str, Any]]) -> Optional[TModel]:
        if doc is None:
            return None
        data = dict(doc)
        if "_id" in data and "id" not in data:
            data["id"] = str(data["_id"])
        return model_cls.model_validate(data)

    @property
    def _users(self):
        return self._db[UserAccount.collection_name]

    # User operations
    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        doc = await self._users.find_one({"_id": user_id})
        return self._decode(UserAccount, doc)

    async def create_user_if_absent(self, user: UserAccount) -> tuple[UserAccount, bool]:
        data = self._prepare_insert(user)
        try:
            await self._users.insert_one(data)
        except DuplicateKeyError:
            existing = await self.get_user(user.id)
            if existing is None:  # pragma: no cover - deleted in between
                raise
            return existing, False
        return user, True

    async def upsert_user_fields(
        self,
        user_id: str,
        fields: Mapping[str, Any],
        defaults: Mapping[str, Any] | None = None,
    ) -> UserAccount:
        now = utcnow()
        on_insert = {
            k: v for k, v in (defaults or {}).items() if k not in fields
        }
        on_insert.setdefault("id", user_id)
        on_insert.setdefault("created_at", now)
        doc = await self._users.find_one_and_update(
            {"_id": user_id},
            {
                "$set": {**fields, "updated_at": now},
                "$setOnInsert": on_insert,
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return self._decode(UserAccount, doc)  # type: ignore[return-value]

    async def find_users_by_customer(self, customer_id: str) -> Iterable[UserAccount]:
        cursor = self._users.find({"billing_customer_id": customer_id})
        docs = await cursor.to_list(length=None)
        return [self._decode(UserAccount, d) for d in docs if d is not None]  # type: ignore[misc]

    async def count_users(self) -> int:
        return await self._users.count_documents({})

    # Credit operations
    async def try_reserve_credits(self, user_id: str, amount: int) -> Optional[UserAccount]:
        doc = await self._users.find_one_and_update(
            {
                "_id": user_id,
                "$expr": {
                    "$gte": [
                        {
                            "$subtract": [
                                "$credits",
                                {"$ifNull": ["$reserved_credits", 0]},
                            ]
                        },
                        amount,
                    ]
                },
            },
            {
                "$inc": {"reserved_credits": amount},
                "$set": {"updated_at": utcnow()},
            },
            return_document=ReturnDocument.AFTER,
        )
        return self._decode(UserAccount, doc)

    async def increment_credits(
        self, user_id: str, credits_delta: int, reserved_delta: int = 0
    ) -> Optional[UserAccount]:
        inc: Dict[str, int] = {"credits": credits_delta}
        if reserved_delta:
            inc["reserved_credits"] = reserved_delta
        doc = await self._users.find_one_and_update(
            {"_id": user_id},
            {"$inc": inc, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return self._decode(UserAccount, doc)

    # Usage log
    async def add_usage_log(self, entry: UsageLogEntry) -> UsageLogEntry:
        col = self._db[UsageLogEntry.collection_name]
        data = self._prepare_insert(entry)
        data.pop("timestamp", None)
        entry_id = data.pop("_id")
        # $currentDate lets the server assign the timestamp
        doc = await col.find_one_and_update(
            {"_id": entry_id},
            {"$setOnInsert": data, "$currentDate": {"timestamp": True}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return self._decode(UsageLogEntry, doc)  # type: ignore[return-value]

    async def count_usage_logs(self) -> int:
        col = self._db[UsageLogEntry.collection_name]
        return await col.count_documents({})

    async def sum_usage_images(self) -> int:
        col = self._db[UsageLogEntry.collection_name]
        cursor = col.aggregate(
            [{"$group": {"_id": None, "total": {"$sum": "$count"}}}]
        )
        docs = await cursor.to_list(length=1)
        return int(docs[0]["total"]) if docs else 0

    # Ledger
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        col = self._db[LedgerEntry.collection_name]
        data = self._prepare_insert(entry)
        await col.insert_one(data)
        return entry
