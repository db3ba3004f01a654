from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .base import BaseDBManager
from ..models.base import utcnow
from ..models.ledger import LedgerEntry
from ..models.usage import UsageLogEntry
from ..models.user import UserAccount


class InMemoryDBManager(BaseDBManager):
    """
    Simple in-memory implementation used for tests and local development.
    NOT suitable for production, but exercises the abstraction and services.

    Records are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self) -> None:
        self._users: Dict[str, UserAccount] = {}
        self._usage_logs: List[UsageLogEntry] = []
        self._ledger: List[LedgerEntry] = []
        self._id_counter: int = 0
        self._lock = asyncio.Lock()

    def _next_id(self) -> str:
        self._id_counter += 1
        return str(self._id_counter)

    @staticmethod
    def _copy(user: Optional[UserAccount]) -> Optional[UserAccount]:
        return user.model_copy(deep=True) if user is not None else None

    # User operations
    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        return self._copy(self._users.get(user_id))

    async def create_user_if_absent(self, user: UserAccount) -> tuple[UserAccount, bool]:
        async with self._lock:
            existing = self._users.get(user.id)
            if existing is not None:
                return self._copy(existing), False
            self._users[user.id] = user.model_copy(deep=True)
            return self._copy(user), True

    async def upsert_user_fields(
        self,
        user_id: str,
        fields: Mapping[str, Any],
        defaults: Mapping[str, Any] | None = None,
    ) -> UserAccount:
        async with self._lock:
            current = self._users.get(user_id)
            if current is None:
                data: Dict[str, Any] = {"id": user_id, **(defaults or {})}
            else:
                data = current.model_dump()
            data.update(fields)
            data["updated_at"] = utcnow()
            user = UserAccount.model_validate(data)
            self._users[user_id] = user
            return self._copy(user)

    async def find_users_by_customer(self, customer_id: str) -> Iterable[UserAccount]:
        return [
            self._copy(u)
            for u in self._users.values()
            if u.billing_customer_id == customer_id
        ]

    async def count_users(self) -> int:
        return len(self._users)

    # Credit operations
    async def try_reserve_credits(self, user_id: str, amount: int) -> Optional[UserAccount]:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None or user.available_credits < amount:
                return None
            user.reserved_credits += amount
            user.updated_at = utcnow()
            return self._copy(user)

    async def increment_credits(
        self, user_id: str, credits_delta: int, reserved_delta: int = 0
    ) -> Optional[UserAccount]:
        async with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.credits += credits_delta
            user.reserved_credits += reserved_delta
            user.updated_at = utcnow()
            return self._copy(user)

    # Usage log
    async def add_usage_log(self, entry: UsageLogEntry) -> UsageLogEntry:
        if entry.id is None:
            entry.id = self._next_id()
        entry.timestamp = utcnow()
        self._usage_logs.append(entry.model_copy())
        return entry

    async def count_usage_logs(self) -> int:
        return len(self._usage_logs)

    async def sum_usage_images(self) -> int:
        return sum(e.count for e in self._usage_logs)

    async def get_usage_logs(self, user_id: str | None = None) -> List[UsageLogEntry]:
        return [
            e.model_copy()
            for e in self._usage_logs
            if user_id is None or e.user_id == user_id
        ]

    # Ledger
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        if entry.id is None:
            entry.id = self._next_id()
        self._ledger.append(entry)
        return entry

    async def get_ledger_entries(self, user_id: str | None = None) -> List[LedgerEntry]:
        return [e for e in self._ledger if user_id is None or e.user_id == user_id]
