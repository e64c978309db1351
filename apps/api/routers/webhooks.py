"""Payment processor webhook receiver."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.dependencies import get_payment_gateway
from services.payments import StripeGateway
from services.webhooks import WebhookProcessor

router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    gateway: StripeGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db),
):
    # Signature is computed over the exact bytes received.
    raw_body = await request.body()
    result = await WebhookProcessor(gateway).handle(raw_body, stripe_signature, db)
    return {
        "success": True,
        "received": True,
        "duplicate": result.duplicate,
        "eventType": result.event_type,
    }
