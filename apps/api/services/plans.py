"""Plan catalog lookup and default catalog seeding."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.plan import Plan
from services.features import FEATURE_COSTS

logger = logging.getLogger(__name__)


def default_plan_catalog() -> List[Dict[str, Any]]:
    return [
        {
            "id": "starter",
            "name": "Starter",
            "monthly_price": 49,
            "monthly_credits": 150,
            "allow_video": False,
            "video_monthly_limit": 0,
            "stripe_price_id": settings.STRIPE_PRICE_ID_STARTER or None,
        },
        {
            "id": "pro",
            "name": "Pro",
            "monthly_price": 129,
            "monthly_credits": 500,
            "allow_video": True,
            "video_monthly_limit": 2,
            "stripe_price_id": settings.STRIPE_PRICE_ID_PRO or None,
        },
        {
            "id": "business",
            "name": "Business",
            "monthly_price": 299,
            "monthly_credits": 1500,
            "allow_video": True,
            "video_monthly_limit": 10,
            "stripe_price_id": settings.STRIPE_PRICE_ID_BUSINESS or None,
        },
    ]


async def seed_default_plans(db: AsyncSession) -> int:
    """Insert catalog plans that do not exist yet. Existing rows are left untouched."""
    result = await db.execute(select(Plan.id))
    existing = set(result.scalars().all())
    created = 0
    for entry in default_plan_catalog():
        if entry["id"] in existing:
            continue
        db.add(Plan(active=True, **entry))
        created += 1
    if created:
        await db.commit()
        logger.info("Seeded %s default plans", created)
    return created


async def get_plan(plan_id: str, db: AsyncSession) -> Optional[Plan]:
    result = await db.execute(select(Plan).where(Plan.id == plan_id))
    return result.scalar_one_or_none()


async def get_plan_by_price_id(price_id: str, db: AsyncSession) -> Optional[Plan]:
    if not price_id:
        return None
    result = await db.execute(select(Plan).where(Plan.stripe_price_id == price_id))
    return result.scalar_one_or_none()


async def list_active_plans(db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(select(Plan).where(Plan.active.is_(True)).order_by(Plan.monthly_price.asc()))
    plans = result.scalars().all()
    return {
        "plans": [
            {
                "id": plan.id,
                "name": plan.name,
                "monthly_price": float(plan.monthly_price or 0),
                "monthly_credits": int(plan.monthly_credits or 0),
                "allow_video": bool(plan.allow_video),
                "video_monthly_limit": int(plan.video_monthly_limit or 0),
            }
            for plan in plans
        ],
        "costs": {feature.value: cost for feature, cost in FEATURE_COSTS.items()},
    }
