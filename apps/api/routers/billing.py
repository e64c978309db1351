"""Billing and credits router."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, ensure_account, get_auth_context
from routers.dependencies import get_payment_gateway
from routers.rate_limit import rate_limit
from services.credits import get_credit_summary
from services.errors import NotFoundError, PaymentProcessorError, ValidationError
from services.payments import StripeGateway
from services.plans import get_plan, list_active_plans

router = APIRouter()
logger = logging.getLogger(__name__)


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(alias="planId", min_length=1, max_length=64)


def _checkout_origin(request: Request) -> str:
    origin = request.headers.get("origin")
    return (origin or settings.APP_BASE_URL).rstrip("/")


@router.get("/credits")
async def credits_summary(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await ensure_account(db, auth.account_id, auth.email)
    return {"success": True, "data": await get_credit_summary(auth.account_id, db)}


@router.get("/plans")
async def plans_catalog(db: AsyncSession = Depends(get_db)):
    return {"success": True, "data": await list_active_plans(db)}


@router.post("/checkout")
async def create_checkout_session(
    body: CheckoutRequest,
    request: Request,
    _rate_limit: None = Depends(rate_limit("billing_checkout", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    gateway: StripeGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    account = await ensure_account(db, auth.account_id, auth.email)

    plan = await get_plan(body.plan_id, db)
    if plan is None or not plan.active:
        raise NotFoundError(f"Unknown plan: {body.plan_id}")
    if not plan.stripe_price_id:
        raise ValidationError(f"Plan {plan.id} has no configured price.")
    if not gateway.configured:
        raise PaymentProcessorError("Payment processor is not configured.")

    session = await gateway.create_checkout_session(
        account_id=account.id,
        plan_id=plan.id,
        price_id=plan.stripe_price_id,
        origin=_checkout_origin(request),
        customer_email=account.email,
    )
    logger.info("Checkout session %s created account=%s plan=%s", session["session_id"], account.id, plan.id)
    return {"success": True, "checkoutUrl": session["checkout_url"]}
