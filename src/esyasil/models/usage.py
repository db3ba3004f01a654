from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel, utcnow


class UsageLogEntry(DBSerializableModel):
    """
    One processed batch. Append-only; read only for aggregate reporting.
    """

    collection_name: ClassVar[str] = "logs"

    id: Optional[str] = Field(default=None)
    user_id: str
    count: int
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="Assigned by the storage layer when the entry is written.",
    )
