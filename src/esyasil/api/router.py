from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from ..errors import (
    ConfigurationError,
    InsufficientCreditsError,
    InvalidBatchSizeError,
    InvalidSignatureError,
    UnauthorizedError,
)
from ..models.api_models import (
    AccountResponse,
    AdminStatsResponse,
    CheckoutSessionResponse,
    ProcessImagesRequest,
    ProcessImagesResponse,
    WebhookAck,
)
from ..models.user import AuthenticatedUser
from .dependencies import ServiceContainer, get_container, get_current_user


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@router.post(
    "/processImages",
    response_model=ProcessImagesResponse,
    response_model_exclude_none=True,
)
async def process_images(
    payload: ProcessImagesRequest,
    container: ServiceContainer = Depends(get_container),
    authorization: str | None = Header(None, alias="Authorization"),
) -> ProcessImagesResponse:
    """
    Remove furniture from 1-5 images.

    Results come back in input order. An admitted batch is billed for every
    image, including the ones that failed.
    """
    try:
        results = await container.batches.process_images_with_token(
            authorization, payload.images
        )
    except InvalidBatchSizeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except UnauthorizedError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient credits. Please subscribe.",
        ) from exc
    except Exception as exc:
        logger.exception("Batch processing failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server error"
        ) from exc
    return ProcessImagesResponse(results=results)


@router.post("/createCheckoutSession", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    user: AuthenticatedUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> CheckoutSessionResponse:
    try:
        url = await container.subscriptions.create_checkout_session(user)
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return CheckoutSessionResponse(url=url)


@router.post("/stripeWebhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    container: ServiceContainer = Depends(get_container),
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
) -> WebhookAck:
    payload = await request.body()
    try:
        await container.subscriptions.handle_webhook(payload, stripe_signature)
    except InvalidSignatureError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook error: {exc}"
        ) from exc
    return WebhookAck()


@router.api_route(
    "/adminStats",
    methods=["GET", "POST"],
    response_model=AdminStatsResponse,
    response_model_by_alias=True,
)
async def admin_stats(
    user: AuthenticatedUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> AdminStatsResponse:
    if container.admin_user_ids and user.uid not in container.admin_user_ids:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return await container.stats.get_stats()


@router.get("/me", response_model=AccountResponse, response_model_by_alias=True)
async def me(
    user: AuthenticatedUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
) -> AccountResponse:
    account = await container.entitlements.create_default_account(
        user.uid, email=user.email, display_name=user.display_name
    )
    return AccountResponse(
        uid=account.id,
        email=account.email,
        display_name=account.display_name,
        credits=account.available_credits,
        subscription_status=account.subscription_status,
        billing_customer_id=account.billing_customer_id,
    )
