from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ImageOutcome(BaseModel):
    """Result of one image in a batch; `index` matches the input position."""

    status: OutcomeStatus
    index: int
    data: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, index: int, data: str) -> "ImageOutcome":
        return cls(status=OutcomeStatus.SUCCESS, index=index, data=data)

    @classmethod
    def failure(cls, index: int, error: str) -> "ImageOutcome":
        return cls(status=OutcomeStatus.ERROR, index=index, error=error)

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS
