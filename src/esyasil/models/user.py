from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import BaseModel, Field

from .base import DBSerializableModel, utcnow


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    NONE = "none"


class UserAccount(DBSerializableModel):
    """
    Per-user entitlement record keyed by the identity provider's uid.
    """

    collection_name: ClassVar[str] = "users"

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    credits: int = 0
    reserved_credits: int = Field(
        default=0,
        description="Credits held by batches that are still being processed.",
    )
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    billing_customer_id: Optional[str] = Field(
        default=None,
        description="Customer reference at the payment provider.",
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_subscribed(self) -> bool:
        return self.subscription_status == SubscriptionStatus.ACTIVE

    @property
    def available_credits(self) -> int:
        return self.credits - self.reserved_credits


class AuthenticatedUser(BaseModel):
    """Identity resolved from a verified bearer token."""

    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None

    model_config = {"frozen": True}


class EntitlementDecision(BaseModel):
    allowed: bool
    unlimited: bool = False
    reason: Optional[str] = None


class Reservation(BaseModel):
    """
    Credits held for one batch between admission and settlement.

    Unlimited reservations belong to subscribed users and hold nothing.
    """

    user_id: str
    credits: int
    unlimited: bool = False
    released: bool = False
    committed: bool = False
