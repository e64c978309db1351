"""Public storefront access: store resolution and per-IP hourly quota."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.account import Account
from models.public_quota_window import PublicQuotaWindow
from models.public_tryon_log import PublicTryOnLog
from services.errors import NotFoundError, RateLimitError

logger = logging.getLogger(__name__)

PUBLIC_WINDOW = timedelta(hours=1)


async def resolve_store_owner(store_slug: str, db: AsyncSession) -> Account:
    slug = (store_slug or "").strip().lower()
    if not slug:
        raise NotFoundError("Store not found.")
    result = await db.execute(select(Account).where(Account.store_slug == slug))
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFoundError("Store not found.")
    return account


async def _claim_slot(client_ip: str, hourly_limit: int, now: datetime, db: AsyncSession) -> Optional[int]:
    """Take one slot in the IP's window with single conditional statements. None when the window is full."""
    window_floor = now - PUBLIC_WINDOW
    restarted = await db.execute(
        update(PublicQuotaWindow)
        .where(PublicQuotaWindow.client_ip == client_ip, PublicQuotaWindow.window_started_at <= window_floor)
        .values(window_started_at=now, used=1)
        .execution_options(synchronize_session=False)
    )
    if restarted.rowcount == 1:
        return 1

    bumped = await db.execute(
        update(PublicQuotaWindow)
        .where(
            PublicQuotaWindow.client_ip == client_ip,
            PublicQuotaWindow.window_started_at > window_floor,
            PublicQuotaWindow.used < hourly_limit,
        )
        .values(used=PublicQuotaWindow.used + 1)
        .execution_options(synchronize_session=False)
    )
    current = await db.execute(select(PublicQuotaWindow.used).where(PublicQuotaWindow.client_ip == client_ip))
    used = current.scalar_one_or_none()
    if bumped.rowcount == 1:
        return int(used)
    if used is not None:
        return None

    db.add(PublicQuotaWindow(client_ip=client_ip, window_started_at=now, used=1))
    await db.flush()
    return 1


async def consume_public_quota(
    client_ip: str,
    store_slug: str,
    feature_type: str,
    db: AsyncSession,
    *,
    limit: Optional[int] = None,
) -> int:
    """
    Record one storefront request for ``client_ip`` or raise once the hourly quota is spent.

    Returns the requests left in the current window. Concurrent requests from
    one IP are serialized on its ``public_quota_windows`` row.
    """
    hourly_limit = int(settings.PUBLIC_TRYON_HOURLY_LIMIT if limit is None else limit)
    now = datetime.now(timezone.utc)

    used: Optional[int] = None
    if hourly_limit > 0:
        try:
            used = await _claim_slot(client_ip, hourly_limit, now, db)
        except IntegrityError:
            # Another request opened this IP's window first.
            await db.rollback()
            used = await _claim_slot(client_ip, hourly_limit, now, db)

    if used is None:
        await db.rollback()
        logger.info("Public quota exceeded ip=%s store=%s", client_ip, store_slug)
        raise RateLimitError(
            f"Try-on limit reached ({hourly_limit} per hour). Try again later.",
            limit=hourly_limit,
        )

    db.add(
        PublicTryOnLog(
            id=str(uuid.uuid4()),
            client_ip=client_ip,
            store_slug=store_slug,
            feature_type=feature_type,
            created_at=now,
        )
    )
    await db.commit()
    return hourly_limit - used
