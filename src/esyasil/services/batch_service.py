from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence
from uuid import uuid4

from ..config import MAX_BATCH_SIZE
from ..db.base import BaseDBManager
from ..errors import (
    ConfigurationError,
    DispatchError,
    InsufficientCreditsError,
    InvalidBatchSizeError,
)
from ..logging.ledger_logger import LedgerLogger
from ..models.outcome import ImageOutcome
from ..models.usage import UsageLogEntry
from ..models.user import AuthenticatedUser
from .auth_service import TokenVerifier, extract_bearer_token
from .entitlement_service import EntitlementService


logger = logging.getLogger(__name__)

PROCESSING_FAILED = "processing failed"


class ImageDispatcher(Protocol):
    async def remove_furniture(self, encoded_image: str) -> str: ...


class BatchService:
    """
    Entry point for a batch of 1..max_batch_size images.

    Billing policy: once a batch is admitted the user is charged for every
    image in it, including images whose processing failed.
    """

    def __init__(
        self,
        entitlements: EntitlementService,
        dispatcher: ImageDispatcher,
        db: BaseDBManager,
        ledger: LedgerLogger,
        verifier: Optional[TokenVerifier] = None,
        max_batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        self._entitlements = entitlements
        self._dispatcher = dispatcher
        self._db = db
        self._ledger = ledger
        self._verifier = verifier
        self._max_batch_size = max_batch_size

    def validate_batch_size(self, images: Sequence[str]) -> None:
        size = len(images)
        if size < 1 or size > self._max_batch_size:
            raise InvalidBatchSizeError(size, self._max_batch_size)

    async def process_images_with_token(
        self, authorization: Optional[str], images: Sequence[str]
    ) -> List[ImageOutcome]:
        """Size check, then bearer authentication, then `process_images`."""
        self.validate_batch_size(images)
        if self._verifier is None:
            raise ConfigurationError("no token verifier configured")
        user = await self._verifier.verify(extract_bearer_token(authorization))
        return await self.process_images(user, images)

    async def process_images(
        self, user: AuthenticatedUser, images: Sequence[str]
    ) -> List[ImageOutcome]:
        self.validate_batch_size(images)
        size = len(images)
        correlation_id = uuid4().hex
        log_extra = {
            "user_id": user.uid,
            "correlation_id": correlation_id,
            "batch_size": size,
        }

        # First authenticated use creates the account with the initial grant
        await self._entitlements.create_default_account(
            user.uid, email=user.email, display_name=user.display_name
        )
        decision = await self._entitlements.check_entitlement(user.uid, size)
        if not decision.allowed:
            logger.info("Batch denied: %s", decision.reason, extra=log_extra)
            raise InsufficientCreditsError(decision.reason or "insufficient credits")
        reservation = await self._entitlements.reserve(
            user.uid, size, correlation_id=correlation_id
        )

        try:
            settled = await asyncio.gather(
                *(self._dispatch_one(i, image, log_extra) for i, image in enumerate(images)),
                return_exceptions=True,
            )
        except asyncio.CancelledError:
            await self._entitlements.release(reservation, correlation_id=correlation_id)
            raise

        # All items have settled at this point
        errors = [r for r in settled if isinstance(r, BaseException)]
        if errors:
            logger.error(
                "Batch aborted, releasing reservation",
                exc_info=errors[0],
                extra=log_extra,
            )
            await self._entitlements.release(reservation, correlation_id=correlation_id)
            raise errors[0]
        outcomes: List[ImageOutcome] = list(settled)

        await self._entitlements.consume(
            user.uid, size, reservation=reservation, correlation_id=correlation_id
        )
        await self._record_usage(user.uid, size, correlation_id)

        failed = sum(1 for o in outcomes if not o.ok)
        logger.info("Batch processed, %d of %d failed", failed, size, extra=log_extra)
        return outcomes

    async def _dispatch_one(
        self, index: int, image: str, log_extra: dict
    ) -> ImageOutcome:
        try:
            data = await self._dispatcher.remove_furniture(image)
        except DispatchError as exc:
            logger.warning("Image %d failed: %s", index, exc, extra=log_extra)
            return ImageOutcome.failure(index, PROCESSING_FAILED)
        return ImageOutcome.success(index, data)

    async def _record_usage(self, user_id: str, count: int, correlation_id: str) -> None:
        # Credits are already settled; a lost usage entry only affects reporting.
        try:
            await self._db.add_usage_log(UsageLogEntry(user_id=user_id, count=count))
        except Exception as exc:
            logger.exception(
                "Usage log write failed", extra={"user_id": user_id, "correlation_id": correlation_id}
            )
            await self._ledger.log_error(
                message="Usage log write failed",
                details={"count": count, "error": str(exc)},
                user_id=user_id,
                correlation_id=correlation_id,
            )
