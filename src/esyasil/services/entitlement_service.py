from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..config import INITIAL_CREDITS, MISSING_ACCOUNT_CREDITS, UNLIMITED_CREDITS
from ..db.base import BaseDBManager
from ..errors import InsufficientCreditsError
from ..logging.ledger_logger import LedgerLogger
from ..models.user import (
    EntitlementDecision,
    Reservation,
    SubscriptionStatus,
    UserAccount,
)


logger = logging.getLogger(__name__)

INSUFFICIENT_CREDITS = "insufficient credits"


class EntitlementService:
    """
    Per-user credit balance and subscription flag.

    Admission is a two-phase hold: `reserve` atomically sets credits aside
    for a batch, and `consume` (or `release`) settles the hold. Holds are
    tracked in `UserAccount.reserved_credits`, so the available balance is
    `credits - reserved_credits` and two concurrent batches cannot both be
    admitted against a balance that only covers one.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        initial_credits: int = INITIAL_CREDITS,
        missing_account_credits: int = MISSING_ACCOUNT_CREDITS,
        unlimited_credits: int = UNLIMITED_CREDITS,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._initial_credits = initial_credits
        self._missing_account_credits = missing_account_credits
        self._unlimited_credits = unlimited_credits

    async def get_account(self, user_id: str) -> Optional[UserAccount]:
        return await self._db.get_user(user_id)

    async def find_accounts_by_customer(self, customer_id: str) -> Iterable[UserAccount]:
        return await self._db.find_users_by_customer(customer_id)

    async def create_default_account(
        self,
        user_id: str,
        email: str | None = None,
        display_name: str | None = None,
    ) -> UserAccount:
        """
        Create the account on first authentication. Safe to call on every
        login: only the first call writes.
        """
        account, created = await self._db.create_user_if_absent(
            UserAccount(
                id=user_id,
                email=email,
                display_name=display_name,
                credits=self._initial_credits,
                subscription_status=SubscriptionStatus.NONE,
            )
        )
        if created:
            logger.info("Account created", extra={"user_id": user_id})
            await self._ledger.log_account(
                user_id=user_id,
                message="Account created",
                details={"credits": account.credits},
            )
        return account

    async def check_entitlement(self, user_id: str, count: int) -> EntitlementDecision:
        account = await self._db.get_user(user_id)
        if account is not None and account.is_subscribed:
            return EntitlementDecision(allowed=True, unlimited=True)

        # An unknown user is assessed against a read-only default balance
        available = (
            account.available_credits
            if account is not None
            else self._missing_account_credits
        )
        if available >= count:
            return EntitlementDecision(allowed=True)
        return EntitlementDecision(allowed=False, reason=INSUFFICIENT_CREDITS)

    async def reserve(
        self,
        user_id: str,
        count: int,
        correlation_id: str | None = None,
    ) -> Reservation:
        if count <= 0:
            raise ValueError("count must be positive")

        account = await self._db.get_user(user_id)
        if account is None:
            account = await self.create_default_account(user_id)

        if account.is_subscribed:
            return Reservation(user_id=user_id, credits=count, unlimited=True)

        updated = await self._db.try_reserve_credits(user_id, count)
        if updated is None:
            await self._ledger.log_error(
                message="Insufficient credits for reservation",
                details={
                    "requested": count,
                    "credits": account.credits,
                    "reserved": account.reserved_credits,
                },
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise InsufficientCreditsError(INSUFFICIENT_CREDITS)

        await self._ledger.log_credits(
            user_id=user_id,
            message="Credits reserved",
            details={"amount": count, "available": updated.available_credits},
            correlation_id=correlation_id,
        )
        return Reservation(user_id=user_id, credits=count)

    async def consume(
        self,
        user_id: str,
        count: int,
        reservation: Reservation | None = None,
        correlation_id: str | None = None,
    ) -> None:
        """
        Deduct `count` credits unless the user is subscribed.

        When `reservation` is given its hold is settled in the same atomic
        update, whether or not credits are deducted.
        """
        if count <= 0:
            raise ValueError("count must be positive")
        if reservation is not None and reservation.user_id != user_id:
            raise ValueError("reservation belongs to another user")

        held = self._held_credits(reservation)
        if reservation is not None and reservation.unlimited:
            # Admitted as a subscriber; a revoke during the batch does not bill it
            self._mark_committed(reservation)
            return

        account = await self._db.get_user(user_id)
        if account is not None and account.is_subscribed:
            if held:
                await self._db.increment_credits(user_id, 0, -held)
            self._mark_committed(reservation)
            return

        updated = await self._db.increment_credits(user_id, -count, -held)
        if updated is None:
            await self.create_default_account(user_id)
            updated = await self._db.increment_credits(user_id, -count, -held)
        self._mark_committed(reservation)

        await self._ledger.log_credits(
            user_id=user_id,
            message="Credits consumed",
            details={
                "amount": count,
                "new_balance": updated.credits if updated else None,
            },
            correlation_id=correlation_id,
        )

    async def release(
        self, reservation: Reservation, correlation_id: str | None = None
    ) -> None:
        held = self._held_credits(reservation)
        if not held:
            return
        await self._db.increment_credits(reservation.user_id, 0, -held)
        reservation.released = True

        await self._ledger.log_credits(
            user_id=reservation.user_id,
            message="Reserved credits released",
            details={"amount": held},
            correlation_id=correlation_id,
        )

    async def grant_subscription(
        self,
        user_id: str,
        customer_ref: str | None,
        correlation_id: str | None = None,
    ) -> UserAccount:
        fields = {
            "subscription_status": SubscriptionStatus.ACTIVE.value,
            "credits": self._unlimited_credits,
        }
        if customer_ref:
            fields["billing_customer_id"] = customer_ref
        account = await self._db.upsert_user_fields(
            user_id, fields, defaults={"reserved_credits": 0}
        )
        logger.info("Subscription granted", extra={"user_id": user_id})
        await self._ledger.log_subscription(
            user_id=user_id,
            message="Subscription granted",
            details={"billing_customer_id": customer_ref},
            correlation_id=correlation_id,
        )
        return account

    async def revoke_subscription(
        self, user_id: str, correlation_id: str | None = None
    ) -> Optional[UserAccount]:
        if await self._db.get_user(user_id) is None:
            logger.warning(
                "Subscription revoke for unknown account", extra={"user_id": user_id}
            )
            return None
        account = await self._db.upsert_user_fields(
            user_id, {"subscription_status": SubscriptionStatus.EXPIRED.value}
        )
        logger.info("Subscription revoked", extra={"user_id": user_id})
        await self._ledger.log_subscription(
            user_id=user_id,
            message="Subscription revoked",
            details={},
            correlation_id=correlation_id,
        )
        return account

    @staticmethod
    def _held_credits(reservation: Reservation | None) -> int:
        if (
            reservation is None
            or reservation.unlimited
            or reservation.released
            or reservation.committed
        ):
            return 0
        return reservation.credits

    @staticmethod
    def _mark_committed(reservation: Reservation | None) -> None:
        if reservation is not None:
            reservation.committed = True
