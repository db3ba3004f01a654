from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping, Optional

from ..models.ledger import LedgerEntry
from ..models.usage import UsageLogEntry
from ..models.user import UserAccount


class BaseDBManager(ABC):
    """
    DB-agnostic async manager interface.

    Every account mutation is a single atomic operation on one record;
    implementations must not read-modify-write in the client.
    """

    # User operations
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserAccount]: ...

    @abstractmethod
    async def create_user_if_absent(self, user: UserAccount) -> tuple[UserAccount, bool]:
        """
        Insert `user` only if no record with its id exists.

        Returns the stored record and whether this call created it.
        """
        ...

    @abstractmethod
    async def upsert_user_fields(
        self,
        user_id: str,
        fields: Mapping[str, Any],
        defaults: Mapping[str, Any] | None = None,
    ) -> UserAccount:
        """
        Set `fields` on the record, creating it from `defaults` when absent.
        """
        ...

    @abstractmethod
    async def find_users_by_customer(self, customer_id: str) -> Iterable[UserAccount]: ...

    @abstractmethod
    async def count_users(self) -> int: ...

    # Credit operations
    @abstractmethod
    async def try_reserve_credits(self, user_id: str, amount: int) -> Optional[UserAccount]:
        """
        Atomically add `amount` to `reserved_credits` if
        `credits - reserved_credits >= amount`.

        Returns the updated record, or None when the balance does not cover it
        or the record does not exist.
        """
        ...

    @abstractmethod
    async def increment_credits(
        self, user_id: str, credits_delta: int, reserved_delta: int = 0
    ) -> Optional[UserAccount]:
        """
        Atomically apply both deltas. Returns the updated record or None.
        """
        ...

    # Usage log
    @abstractmethod
    async def add_usage_log(self, entry: UsageLogEntry) -> UsageLogEntry: ...

    @abstractmethod
    async def count_usage_logs(self) -> int: ...

    @abstractmethod
    async def sum_usage_images(self) -> int: ...

    # Ledger
    @abstractmethod
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry: ...
