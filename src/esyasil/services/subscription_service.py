from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import stripe

from ..errors import ConfigurationError, InvalidSignatureError
from ..models.user import AuthenticatedUser
from .entitlement_service import EntitlementService


logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})

DEFAULT_TOLERANCE_SECONDS = 300


class SubscriptionService:
    """
    Payment-provider side of entitlements: checkout session creation and
    webhook reconciliation of the subscription flag.
    """

    def __init__(
        self,
        entitlements: EntitlementService,
        webhook_secret: str | None,
        api_key: str | None = None,
        unit_amount: int = 10000,
        currency: str = "try",
        product_name: str = "EşyaSil AI Pro (Aylık)",
        success_url: str = "https://your-app-url.com?success=true",
        cancel_url: str = "https://your-app-url.com?canceled=true",
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    ) -> None:
        self._entitlements = entitlements
        self._webhook_secret = webhook_secret
        self._api_key = api_key
        self._unit_amount = unit_amount
        self._currency = currency
        self._product_name = product_name
        self._success_url = success_url
        self._cancel_url = cancel_url
        self._tolerance = tolerance_seconds

    def verify_event(self, payload: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        if not self._webhook_secret:
            raise ConfigurationError("webhook secret is not configured")
        if not signature_header:
            raise InvalidSignatureError("missing signature header")
        try:
            text = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                text, signature_header, self._webhook_secret, self._tolerance
            )
            event = json.loads(text)
        except stripe.SignatureVerificationError as exc:
            raise InvalidSignatureError(str(exc)) from exc
        except ValueError as exc:
            raise InvalidSignatureError("malformed event payload") from exc
        if not isinstance(event, dict):
            raise InvalidSignatureError("malformed event payload")
        return event

    async def handle_webhook(self, payload: bytes, signature_header: Optional[str]) -> str:
        """
        Verify and apply one webhook event. Returns the event type.

        Nothing is written unless the signature verifies.
        """
        event = self.verify_event(payload, signature_header)
        event_type = str(event.get("type", ""))
        event_id = event.get("id")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == CHECKOUT_COMPLETED:
            user_id = obj.get("client_reference_id")
            if user_id:
                await self._entitlements.grant_subscription(
                    user_id, obj.get("customer"), correlation_id=event_id
                )
            else:
                logger.warning("Checkout completed without client reference: %s", event_id)
        elif event_type == SUBSCRIPTION_DELETED or (
            event_type == SUBSCRIPTION_UPDATED
            and obj.get("status") not in ACTIVE_SUBSCRIPTION_STATUSES
        ):
            await self._revoke_for_customer(obj.get("customer"), event_id)
        else:
            logger.debug("Ignoring webhook event %s", event_type)

        return event_type

    async def create_checkout_session(self, user: AuthenticatedUser) -> str:
        if not self._api_key:
            raise ConfigurationError("payment provider API key is not configured")
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            api_key=self._api_key,
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": self._currency,
                        "product_data": {"name": self._product_name},
                        "unit_amount": self._unit_amount,
                        "recurring": {"interval": "month"},
                    },
                    "quantity": 1,
                }
            ],
            mode="subscription",
            success_url=self._success_url,
            cancel_url=self._cancel_url,
            client_reference_id=user.uid,
        )
        logger.info("Checkout session created", extra={"user_id": user.uid})
        return session.url

    async def _revoke_for_customer(self, customer_id: Optional[str], event_id: Optional[str]) -> None:
        if not customer_id:
            logger.warning("Subscription event without customer: %s", event_id)
            return
        accounts = list(await self._entitlements.find_accounts_by_customer(customer_id))
        if not accounts:
            logger.warning("No account for billing customer %s", customer_id)
        for account in accounts:
            await self._entitlements.revoke_subscription(account.id, correlation_id=event_id)
