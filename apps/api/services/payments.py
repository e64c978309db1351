"""
Stripe payment gateway.

Handles:
- Checkout session creation for plan subscriptions
- Webhook signature verification and event parsing
- Subscription and checkout lookups for invoices that arrive before their checkout link
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import stripe

from services.errors import PaymentProcessorError, ValidationError, WebhookSignatureError

logger = logging.getLogger(__name__)


class StripeGateway:
    """Explicit Stripe client; the API key is passed per call, never set globally."""

    def __init__(self, api_key: str, webhook_secret: str, tolerance_seconds: int = 300):
        self.api_key = (api_key or "").strip()
        self.webhook_secret = (webhook_secret or "").strip()
        self.tolerance_seconds = int(tolerance_seconds)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify the signature header over the raw body and return the parsed event."""
        if not signature or not self.webhook_secret:
            logger.error("Webhook rejected: missing stripe-signature header or webhook secret")
            raise WebhookSignatureError("Missing signature or webhook secret.")
        if not payload:
            raise ValidationError("Empty webhook body.")

        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("Webhook body is not valid UTF-8.") from exc

        try:
            stripe.WebhookSignature.verify_header(text, signature, self.webhook_secret, self.tolerance_seconds)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature validation failed: %s", exc)
            raise WebhookSignatureError() from exc

        try:
            event = json.loads(text)
        except ValueError as exc:
            raise ValidationError("Webhook body is not valid JSON.") from exc

        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise ValidationError("Webhook event is missing id or type.")
        return event

    async def create_checkout_session(
        self,
        *,
        account_id: str,
        plan_id: str,
        price_id: str,
        origin: str,
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a hosted subscription checkout session for one plan."""
        metadata = {"accountId": account_id, "planId": plan_id}
        params: Dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": f"{origin}/#/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{origin}/#/settings",
            "client_reference_id": account_id,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, api_key=self.api_key, **params)
        except stripe.StripeError as exc:
            logger.error("Stripe checkout error for account %s: %s", account_id, exc)
            raise PaymentProcessorError("Checkout session could not be created.") from exc

        logger.info("Checkout session created for account %s: %s", account_id, session.id)
        return {"session_id": session.id, "checkout_url": session.url}

    async def retrieve_subscription_metadata(self, subscription_id: str) -> Dict[str, Any]:
        """Metadata stored on the processor's subscription object."""
        try:
            subscription = await asyncio.to_thread(stripe.Subscription.retrieve, subscription_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            logger.error("Stripe subscription lookup failed for %s: %s", subscription_id, exc)
            raise PaymentProcessorError("Subscription could not be retrieved.") from exc
        metadata = getattr(subscription, "metadata", None) or {}
        return {str(key): value for key, value in dict(metadata).items()}

    async def find_checkout_account(self, subscription_id: str) -> Optional[str]:
        """Account id recorded on the checkout session that created ``subscription_id``."""
        try:
            sessions = await asyncio.to_thread(
                stripe.checkout.Session.list,
                subscription=subscription_id,
                limit=1,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session lookup failed for %s: %s", subscription_id, exc)
            raise PaymentProcessorError("Checkout sessions could not be listed.") from exc

        for session in getattr(sessions, "data", None) or []:
            metadata = getattr(session, "metadata", None) or {}
            account_id = getattr(session, "client_reference_id", None) or dict(metadata).get("accountId")
            if account_id:
                return str(account_id)
        return None
