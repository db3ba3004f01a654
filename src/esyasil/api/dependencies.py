from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from fastapi import Header, HTTPException, Request, status

from ..config import Settings
from ..db.base import BaseDBManager
from ..db.memory import InMemoryDBManager
from ..errors import ConfigurationError, UnauthorizedError
from ..logging.ledger_logger import LedgerLogger
from ..models.user import AuthenticatedUser
from ..services.auth_service import JWTTokenVerifier, TokenVerifier, extract_bearer_token
from ..services.batch_service import BatchService, ImageDispatcher
from ..services.dispatch_client import FurnitureRemovalClient
from ..services.entitlement_service import EntitlementService
from ..services.stats_service import StatsService
from ..services.subscription_service import SubscriptionService


@dataclass
class ServiceContainer:
    """Explicitly constructed services shared by all request handlers."""

    db: BaseDBManager
    ledger: LedgerLogger
    verifier: TokenVerifier
    entitlements: EntitlementService
    batches: BatchService
    subscriptions: SubscriptionService
    stats: StatsService
    admin_user_ids: FrozenSet[str] = field(default_factory=frozenset)


def _create_db_manager(settings: Settings) -> BaseDBManager:
    if settings.mongo_uri:
        from ..db.mongo import MongoDBManager

        return MongoDBManager.from_client_uri(settings.mongo_uri, settings.mongo_db)
    return InMemoryDBManager()


def build_container(
    settings: Settings,
    db: Optional[BaseDBManager] = None,
    dispatcher: Optional[ImageDispatcher] = None,
    verifier: Optional[TokenVerifier] = None,
) -> ServiceContainer:
    db = db or _create_db_manager(settings)
    ledger = LedgerLogger(db=db, file_path=settings.ledger_log_path)

    if verifier is None:
        verifier = JWTTokenVerifier(
            secret=settings.jwt_secret,
            jwks_url=settings.jwt_jwks_url,
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    if dispatcher is None:
        if not settings.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is not configured")
        dispatcher = FurnitureRemovalClient.from_api_key(
            settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_seconds=settings.dispatch_timeout_seconds,
            max_attempts=settings.dispatch_max_attempts,
            backoff_seconds=settings.dispatch_backoff_seconds,
        )

    entitlements = EntitlementService(
        db=db,
        ledger=ledger,
        initial_credits=settings.initial_credits,
        missing_account_credits=settings.missing_account_credits,
        unlimited_credits=settings.unlimited_credits,
    )
    return ServiceContainer(
        db=db,
        ledger=ledger,
        verifier=verifier,
        entitlements=entitlements,
        batches=BatchService(
            entitlements=entitlements,
            dispatcher=dispatcher,
            db=db,
            ledger=ledger,
            verifier=verifier,
            max_batch_size=settings.max_batch_size,
        ),
        subscriptions=SubscriptionService(
            entitlements=entitlements,
            webhook_secret=settings.stripe_webhook_secret,
            api_key=settings.stripe_secret_key,
            unit_amount=settings.checkout_unit_amount,
            currency=settings.checkout_currency,
            product_name=settings.checkout_product_name,
            success_url=settings.checkout_success_url,
            cancel_url=settings.checkout_cancel_url,
        ),
        stats=StatsService(db),
        admin_user_ids=frozenset(settings.admin_user_ids),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


async def get_current_user(
    request: Request,
    authorization: str | None = Header(None, alias="Authorization"),
) -> AuthenticatedUser:
    container = get_container(request)
    try:
        return await container.verifier.verify(extract_bearer_token(authorization))
    except UnauthorizedError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)
        ) from exc
