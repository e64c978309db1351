"""Credit ledger: authorize, charge, release, credit, and status transitions.

Every balance change is a single conditional UPDATE on the subscription row
followed by one CreditTransaction insert in the same transaction. The balance
is never read into application memory and written back.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.plan import Plan
from models.subscription import SUBSCRIPTION_STATUSES, Subscription
from services.errors import (
    InsufficientCreditsError,
    NotFoundError,
    PlanCapabilityError,
    ValidationError,
)
from services.features import FEATURE_COSTS, FeatureType, cost_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Authorization:
    """Proof that the balance covered the cost at check time. Not a reservation."""

    account_id: str
    feature_type: FeatureType
    cost: int


async def _load_subscription(account_id: str, db: AsyncSession) -> Optional[Tuple[Subscription, Plan]]:
    result = await db.execute(
        select(Subscription, Plan)
        .join(Plan, Plan.id == Subscription.plan_id)
        .where(Subscription.account_id == account_id)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def _current_balance(account_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(Subscription.credit_balance).where(Subscription.account_id == account_id))
    return int(result.scalar() or 0)


async def authorize(account_id: str, feature_type: FeatureType, db: AsyncSession) -> Authorization:
    """Validate plan capability and balance sufficiency without mutating anything."""
    feature = FeatureType(feature_type)
    loaded = await _load_subscription(account_id, db)
    if loaded is None:
        raise NotFoundError("Subscription not found. Contact support.")
    subscription, plan = loaded

    cost = cost_of(feature)
    if feature == FeatureType.VIDEO:
        if not plan.allow_video:
            raise PlanCapabilityError("The current plan does not allow video generation.", plan_id=plan.id)
        used = int(subscription.videos_used_this_period or 0)
        limit = int(plan.video_monthly_limit or 0)
        if used >= limit:
            raise PlanCapabilityError(
                f"Monthly video limit reached ({used}/{limit}).",
                plan_id=plan.id,
                videos_used=used,
                video_limit=limit,
            )

    balance = int(subscription.credit_balance or 0)
    if balance < cost:
        raise InsufficientCreditsError(
            f"Insufficient credits. Cost: {cost}, available: {balance}.",
            required=cost,
            available=balance,
        )

    return Authorization(account_id=account_id, feature_type=feature, cost=cost)


async def charge(
    authorization: Authorization,
    db: AsyncSession,
    *,
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> int:
    """Debit an authorized cost after provider success. Returns the balance after."""
    cost = int(authorization.cost)
    values: Dict[Any, Any] = {
        Subscription.credit_balance: Subscription.credit_balance - cost,
        Subscription.updated_at: func.now(),
    }
    if authorization.feature_type == FeatureType.VIDEO:
        values[Subscription.videos_used_this_period] = Subscription.videos_used_this_period + 1

    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.account_id == authorization.account_id,
            Subscription.credit_balance >= cost,
        )
        .values(values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        if commit:
            await db.rollback()
        available = await _current_balance(authorization.account_id, db)
        logger.warning(
            "Charge re-check failed account=%s feature=%s cost=%s available=%s",
            authorization.account_id,
            authorization.feature_type.value,
            cost,
            available,
        )
        raise InsufficientCreditsError(
            f"Insufficient credits. Cost: {cost}, available: {available}.",
            required=cost,
            available=available,
        )

    balance_after = await _current_balance(authorization.account_id, db)
    db.add(
        CreditTransaction(
            id=str(uuid.uuid4()),
            account_id=authorization.account_id,
            amount=-cost,
            entry_type="debit",
            feature_type=authorization.feature_type.value,
            description=f"Generation: {authorization.feature_type.value}",
            balance_after=balance_after,
            reference_id=reference_id,
        )
    )
    if commit:
        await db.commit()
    else:
        await db.flush()
    logger.info(
        "Charged account=%s feature=%s cost=%s balance_after=%s",
        authorization.account_id,
        authorization.feature_type.value,
        cost,
        balance_after,
    )
    return balance_after


def release(authorization: Authorization) -> None:
    """Undo an authorization. Nothing to compensate since authorize never debits."""
    logger.debug(
        "Released authorization account=%s feature=%s cost=%s",
        authorization.account_id,
        authorization.feature_type.value,
        authorization.cost,
    )


async def credit(
    account_id: str,
    amount: int,
    reason: str,
    db: AsyncSession,
    *,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> int:
    """Atomically add credits and append the matching ledger row. Returns the balance after."""
    grant = int(amount)
    if grant <= 0:
        raise ValidationError("Credit amount must be greater than 0.")

    result = await db.execute(
        update(Subscription)
        .where(Subscription.account_id == account_id)
        .values(
            {
                Subscription.credit_balance: Subscription.credit_balance + grant,
                Subscription.updated_at: func.now(),
            }
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError(f"Subscription not found for account {account_id}.")

    balance_after = await _current_balance(account_id, db)
    db.add(
        CreditTransaction(
            id=str(uuid.uuid4()),
            account_id=account_id,
            amount=grant,
            entry_type=reason,
            feature_type=None,
            description=description or reason,
            balance_after=balance_after,
            reference_id=reference_id,
        )
    )
    if commit:
        await db.commit()
    else:
        await db.flush()
    logger.info("Credited account=%s amount=%s reason=%s balance_after=%s", account_id, grant, reason, balance_after)
    return balance_after


async def set_status(account_id: str, status: str, db: AsyncSession, *, commit: bool = True) -> None:
    """Transition subscription status; independent of the balance."""
    if status not in SUBSCRIPTION_STATUSES:
        raise ValidationError(f"Unknown subscription status: {status}")
    result = await db.execute(
        update(Subscription)
        .where(Subscription.account_id == account_id)
        .values({Subscription.status: status, Subscription.updated_at: func.now()})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError(f"Subscription not found for account {account_id}.")
    if commit:
        await db.commit()
    logger.info("Subscription status account=%s status=%s", account_id, status)


async def reset_period_usage(account_id: str, db: AsyncSession, *, commit: bool = True) -> None:
    """Start a new billing period for per-period counters."""
    result = await db.execute(
        update(Subscription)
        .where(Subscription.account_id == account_id)
        .values({Subscription.videos_used_this_period: 0, Subscription.updated_at: func.now()})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError(f"Subscription not found for account {account_id}.")
    if commit:
        await db.commit()


async def get_credit_summary(account_id: str, db: AsyncSession) -> Dict[str, Any]:
    loaded = await _load_subscription(account_id, db)
    if loaded is None:
        raise NotFoundError("Subscription not found. Contact support.")
    subscription, plan = loaded

    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.account_id == account_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(30)
    )
    entries = result.scalars().all()
    return {
        "balance": int(subscription.credit_balance or 0),
        "status": subscription.status,
        "plan": {
            "id": plan.id,
            "name": plan.name,
            "monthly_credits": int(plan.monthly_credits or 0),
            "allow_video": bool(plan.allow_video),
            "video_monthly_limit": int(plan.video_monthly_limit or 0),
        },
        "videos_used_this_period": int(subscription.videos_used_this_period or 0),
        "costs": {feature.value: cost for feature, cost in FEATURE_COSTS.items()},
        "recent_entries": [
            {
                "id": entry.id,
                "entry_type": entry.entry_type,
                "amount": entry.amount,
                "feature_type": entry.feature_type,
                "balance_after": entry.balance_after,
                "description": entry.description,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in entries
        ],
    }
