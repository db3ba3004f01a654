from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow


class LedgerEventType(str, Enum):
    ACCOUNT = "account"
    CREDITS = "credits"
    SUBSCRIPTION = "subscription"
    ERROR = "error"


class LedgerEntry(DBSerializableModel):
    """
    Audit record of an account mutation, persisted to DB and mirrored to file.
    """

    collection_name: ClassVar[str] = "ledger"

    id: Optional[str] = Field(default=None)
    event_type: LedgerEventType
    user_id: Optional[str] = None
    correlation_id: Optional[str] = Field(
        default=None,
        description="Correlation id for tracing one batch across components.",
    )
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
