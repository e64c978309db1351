"""Payment processor webhook processing with transactional idempotency."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.account import Account
from models.plan import Plan
from models.processed_webhook_event import ProcessedWebhookEvent
from models.subscription import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_CANCELED, Subscription
from services import credits
from services.payments import StripeGateway
from services.plans import get_plan, get_plan_by_price_id

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout_completed"
INVOICE_PAID = "invoice_paid"
SUBSCRIPTION_CANCELED_EVENT = "subscription_canceled"

EVENT_TYPE_MAP = {
    "checkout.session.completed": CHECKOUT_COMPLETED,
    "invoice.paid": INVOICE_PAID,
    "customer.subscription.deleted": SUBSCRIPTION_CANCELED_EVENT,
}


@dataclass
class WebhookResult:
    event_id: str
    event_type: str
    duplicate: bool = False
    applied: bool = False
    detail: Optional[str] = None


def _dig(payload: Any, *path: Any) -> Any:
    current = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def _first_present(*values: Any) -> Optional[str]:
    for value in values:
        if value:
            return str(value)
    return None


def extract_invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    """Subscription id moves around between processor API versions; try every known location."""
    return _first_present(
        invoice.get("subscription"),
        _dig(invoice, "subscription_details", "subscription"),
        _dig(invoice, "parent", "subscription_details", "subscription"),
        _dig(invoice, "lines", "data", 0, "subscription"),
        _dig(invoice, "lines", "data", 0, "parent", "subscription_item_details", "subscription"),
    )


def extract_invoice_price_id(invoice: Dict[str, Any]) -> Optional[str]:
    return _first_present(
        _dig(invoice, "lines", "data", 0, "price", "id"),
        _dig(invoice, "lines", "data", 0, "pricing", "price_details", "price"),
        _dig(invoice, "lines", "data", 0, "metadata", "price_id"),
    )


def _invoice_metadata(invoice: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for candidate in (
        invoice.get("metadata"),
        _dig(invoice, "subscription_details", "metadata"),
        _dig(invoice, "parent", "subscription_details", "metadata"),
    ):
        if isinstance(candidate, dict):
            for key, value in candidate.items():
                merged.setdefault(key, value)
    return merged


async def _ensure_account(db: AsyncSession, account_id: str, email: Optional[str] = None) -> Account:
    result = await db.execute(select(Account).where(Account.id == account_id))
    account = result.scalar_one_or_none()
    if account:
        return account
    account = Account(id=account_id, email=email)
    db.add(account)
    await db.flush()
    return account


async def _subscription_by_external_id(db: AsyncSession, external_id: Optional[str]) -> Optional[Subscription]:
    if not external_id:
        return None
    result = await db.execute(
        select(Subscription)
        .where(Subscription.external_subscription_id == external_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _upsert_subscription(
    db: AsyncSession,
    *,
    account_id: str,
    plan_id: str,
    external_subscription_id: Optional[str],
    external_customer_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Subscription:
    """Create or re-activate the account's subscription. Never touches the balance."""
    await _ensure_account(db, account_id, email)
    result = await db.execute(
        select(Subscription)
        .where(Subscription.account_id == account_id)
        .execution_options(populate_existing=True)
    )
    subscription = result.scalar_one_or_none()
    if subscription is None:
        subscription = Subscription(
            id=str(uuid.uuid4()),
            account_id=account_id,
            plan_id=plan_id,
            external_subscription_id=external_subscription_id,
            external_customer_id=external_customer_id,
            status=SUBSCRIPTION_ACTIVE,
            credit_balance=0,
            videos_used_this_period=0,
        )
        db.add(subscription)
    else:
        subscription.plan_id = plan_id
        subscription.status = SUBSCRIPTION_ACTIVE
        if external_subscription_id:
            subscription.external_subscription_id = external_subscription_id
        if external_customer_id:
            subscription.external_customer_id = external_customer_id
    await db.flush()
    return subscription


class WebhookProcessor:
    """Apply verified processor events exactly once per external event id."""

    def __init__(self, gateway: StripeGateway):
        self.gateway = gateway

    async def handle(self, raw_body: bytes, signature: Optional[str], db: AsyncSession) -> WebhookResult:
        event = self.gateway.verify_webhook(raw_body, signature)
        return await self.apply_event(event, db)

    async def apply_event(self, event: Dict[str, Any], db: AsyncSession) -> WebhookResult:
        event_id = str(event["id"])
        external_type = str(event["type"])
        event_type = EVENT_TYPE_MAP.get(external_type, external_type)
        result = WebhookResult(event_id=event_id, event_type=event_type)

        existing = await db.execute(
            select(ProcessedWebhookEvent.external_event_id).where(
                ProcessedWebhookEvent.external_event_id == event_id
            )
        )
        if existing.scalar_one_or_none():
            logger.info("Webhook event %s (%s) already processed; skipping", event_id, external_type)
            result.duplicate = True
            return result

        try:
            db.add(ProcessedWebhookEvent(external_event_id=event_id, event_type=external_type))
            await db.flush()
        except IntegrityError:
            await db.rollback()
            logger.info("Webhook event %s recorded concurrently; skipping", event_id)
            result.duplicate = True
            return result

        logger.info("Processing webhook event %s [%s]", external_type, event_id)
        data = _dig(event, "data", "object") or {}
        try:
            if event_type == CHECKOUT_COMPLETED:
                result.applied = await self._checkout_completed(data, db)
            elif event_type == INVOICE_PAID:
                result.applied = await self._invoice_paid(event_id, data, db)
            elif event_type == SUBSCRIPTION_CANCELED_EVENT:
                result.applied = await self._subscription_canceled(data, db)
            else:
                logger.info("Unhandled webhook event type %s", external_type)
                result.detail = "unhandled_event_type"
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return result

    async def _checkout_completed(self, session: Dict[str, Any], db: AsyncSession) -> bool:
        metadata = session.get("metadata") or {}
        account_id = _first_present(session.get("client_reference_id"), metadata.get("accountId"))
        plan_id = _first_present(metadata.get("planId"))
        subscription_id = _first_present(session.get("subscription"))

        if not account_id or not plan_id:
            logger.warning(
                "Checkout session %s missing account or plan (account=%s plan=%s)",
                session.get("id"),
                account_id,
                plan_id,
            )
            return False

        plan = await get_plan(plan_id, db)
        if plan is None:
            logger.warning("Checkout session %s references unknown plan %s", session.get("id"), plan_id)
            return False

        await _upsert_subscription(
            db,
            account_id=account_id,
            plan_id=plan.id,
            external_subscription_id=subscription_id,
            external_customer_id=_first_present(session.get("customer")),
            email=_first_present(session.get("customer_email"), _dig(session, "customer_details", "email")),
        )
        logger.info("Linked account %s to plan %s with subscription %s", account_id, plan.id, subscription_id)
        return True

    async def _resolve_unlinked_account(
        self,
        subscription_id: Optional[str],
        invoice: Dict[str, Any],
        metadata: Dict[str, Any],
        db: AsyncSession,
    ) -> Optional[str]:
        """
        Find the account for an invoice whose subscription has no local row yet.

        Tries, in order: the invoice's inline metadata, the processor
        subscription's metadata, the checkout session that created the
        subscription, and finally an account with the invoice's customer
        email. Processor metadata is merged into ``metadata`` so a planId found
        there is usable for plan resolution.
        """
        account_id = _first_present(metadata.get("accountId"))
        if account_id:
            return account_id

        if subscription_id and self.gateway.configured:
            remote = await self.gateway.retrieve_subscription_metadata(subscription_id)
            for key, value in remote.items():
                metadata.setdefault(key, value)
            account_id = _first_present(remote.get("accountId"))
            if account_id:
                logger.info("Resolved subscription %s from processor metadata", subscription_id)
                return account_id

            account_id = await self.gateway.find_checkout_account(subscription_id)
            if account_id:
                logger.info("Resolved subscription %s from its checkout session", subscription_id)
                return account_id

        email = _first_present(invoice.get("customer_email"), _dig(invoice, "customer_details", "email"))
        if email:
            result = await db.execute(select(Account.id).where(func.lower(Account.email) == email.lower()).limit(1))
            account_id = result.scalar_one_or_none()
            if account_id:
                logger.info("Resolved subscription %s by customer email", subscription_id)
                return account_id
        return None

    async def _invoice_paid(self, event_id: str, invoice: Dict[str, Any], db: AsyncSession) -> bool:
        subscription_id = extract_invoice_subscription_id(invoice)
        price_id = extract_invoice_price_id(invoice)
        metadata = _invoice_metadata(invoice)

        subscription = await _subscription_by_external_id(db, subscription_id)
        account_id = None
        if subscription is None:
            account_id = await self._resolve_unlinked_account(subscription_id, invoice, metadata, db)
            if not account_id:
                logger.warning("invoice.paid %s: no account found for subscription %s", event_id, subscription_id)
                return False

        plan: Optional[Plan] = await get_plan_by_price_id(price_id, db) if price_id else None
        if plan is None and metadata.get("planId"):
            plan = await get_plan(str(metadata["planId"]), db)
        if plan is None and subscription is not None:
            plan = await get_plan(subscription.plan_id, db)
        if plan is None:
            logger.warning(
                "invoice.paid %s: plan not found (price=%s subscription=%s)", event_id, price_id, subscription_id
            )
            return False

        if subscription is None:
            subscription = await _upsert_subscription(
                db,
                account_id=account_id,
                plan_id=plan.id,
                external_subscription_id=subscription_id,
                external_customer_id=_first_present(invoice.get("customer")),
                email=_first_present(invoice.get("customer_email")),
            )
        elif subscription.plan_id != plan.id or subscription.status != SUBSCRIPTION_ACTIVE:
            subscription.plan_id = plan.id
            subscription.status = SUBSCRIPTION_ACTIVE
            await db.flush()

        allocation = int(plan.monthly_credits or 0)
        if allocation > 0:
            await credits.credit(
                subscription.account_id,
                allocation,
                "monthly_allocation",
                db,
                description=f"Monthly plan credits: {plan.id}",
                reference_id=event_id,
                commit=False,
            )
        await credits.reset_period_usage(subscription.account_id, db, commit=False)
        logger.info("Allocated %s credits to account %s for plan %s", allocation, subscription.account_id, plan.id)
        return True

    async def _subscription_canceled(self, processor_subscription: Dict[str, Any], db: AsyncSession) -> bool:
        subscription = await _subscription_by_external_id(db, _first_present(processor_subscription.get("id")))
        if subscription is None:
            logger.warning("Cancellation for unknown subscription %s", processor_subscription.get("id"))
            return False
        await credits.set_status(subscription.account_id, SUBSCRIPTION_CANCELED, db, commit=False)
        logger.info("Canceled subscription %s for account %s", subscription.external_subscription_id, subscription.account_id)
        return True
