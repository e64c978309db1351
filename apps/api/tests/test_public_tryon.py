import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, update
from sqlalchemy.future import select

from models.public_quota_window import PublicQuotaWindow
from models.public_tryon_log import PublicTryOnLog
from models.subscription import Subscription
from services.errors import RateLimitError
from services.public_access import consume_public_quota


OWNER_ID = "store-owner"
STORE_HEADER = {"X-Store-Slug": "Maison-Lumiere"}


@pytest.mark.asyncio
async def test_storefront_requests_bill_the_owner(api_client, session_maker, seed_subscription, fake_provider):
    await seed_subscription(OWNER_ID, plan_id="starter", balance=50, store_slug="maison-lumiere")

    response = await api_client.post(
        "/generate/image",
        json={"prompt": "try this on", "images": [{"data": "Z2FybWVudA==", "role": "garment"}]},
        headers=STORE_HEADER,
    )

    assert response.status_code == 200
    async with session_maker() as session:
        subscription = (
            await session.execute(select(Subscription).where(Subscription.account_id == OWNER_ID))
        ).scalar_one()
        logs = (await session.execute(select(PublicTryOnLog))).scalars().all()
    assert subscription.credit_balance == 42
    assert len(logs) == 1
    assert logs[0].store_slug == "maison-lumiere"
    assert logs[0].feature_type == "tryOn"
    assert logs[0].client_ip == "127.0.0.1"


@pytest.mark.asyncio
async def test_storefront_quota_is_five_per_hour_per_ip(api_client, seed_subscription):
    await seed_subscription(OWNER_ID, plan_id="starter", balance=50, store_slug="maison-lumiere")

    for _ in range(5):
        response = await api_client.post("/generate/text", json={"prompt": "caption"}, headers=STORE_HEADER)
        assert response.status_code == 200

    blocked = await api_client.post("/generate/text", json={"prompt": "caption"}, headers=STORE_HEADER)

    assert blocked.status_code == 429
    assert blocked.json()["code"] == "rate_limited"


@pytest.mark.asyncio
async def test_storefront_cannot_generate_video(api_client, seed_subscription, fake_provider):
    await seed_subscription(OWNER_ID, plan_id="business", balance=500, store_slug="maison-lumiere")

    response = await api_client.post("/generate/video", json={"prompt": "walk"}, headers=STORE_HEADER)

    assert response.status_code == 401
    assert fake_provider.calls == []


@pytest.mark.asyncio
async def test_unknown_store_is_not_found(api_client):
    response = await api_client.post("/generate/text", json={"prompt": "caption"}, headers={"X-Store-Slug": "nope"})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_owner_out_of_credits_gets_storefront_message(api_client, seed_subscription, fake_provider):
    await seed_subscription(OWNER_ID, plan_id="starter", balance=0, store_slug="maison-lumiere")

    response = await api_client.post("/generate/image", json={"prompt": "a scarf"}, headers=STORE_HEADER)

    assert response.status_code == 403
    assert response.json()["error"] == "This storefront has paused virtual try-on temporarily."
    assert "available" not in response.json().get("details", {})
    assert fake_provider.calls == []


@pytest.mark.asyncio
async def test_quota_is_tracked_per_client_ip(session_maker, seed_subscription):
    await seed_subscription(OWNER_ID, plan_id="starter", balance=50, store_slug="maison-lumiere")

    async with session_maker() as session:
        assert await consume_public_quota("10.0.0.1", "maison-lumiere", "text", session, limit=2) == 1
        assert await consume_public_quota("10.0.0.1", "maison-lumiere", "text", session, limit=2) == 0
        with pytest.raises(RateLimitError):
            await consume_public_quota("10.0.0.1", "maison-lumiere", "text", session, limit=2)
        assert await consume_public_quota("10.0.0.2", "maison-lumiere", "text", session, limit=2) == 1


@pytest.mark.asyncio
async def test_owner_balance_drop_mid_generation_keeps_storefront_message(
    api_client, session_maker, seed_subscription, fake_provider
):
    await seed_subscription(OWNER_ID, plan_id="starter", balance=10, store_slug="maison-lumiere")

    async def owner_spends_elsewhere(name):
        async with session_maker() as session:
            await session.execute(
                update(Subscription).where(Subscription.account_id == OWNER_ID).values(credit_balance=3)
            )
            await session.commit()

    fake_provider.during_call = owner_spends_elsewhere

    response = await api_client.post(
        "/generate/image",
        json={"prompt": "try this on", "images": [{"data": "Z2FybWVudA==", "role": "garment"}]},
        headers=STORE_HEADER,
    )

    assert response.status_code == 403
    body = response.json()
    assert body["error"] == "This storefront has paused virtual try-on temporarily."
    assert "details" not in body
    assert "Cost" not in body["error"]


async def _consume(session_maker, client_ip, limit=5):
    async with session_maker() as session:
        return await consume_public_quota(client_ip, "maison-lumiere", "text", session, limit=limit)


async def _log_count(session_maker, client_ip):
    async with session_maker() as session:
        result = await session.execute(select(func.count(PublicTryOnLog.id)).where(PublicTryOnLog.client_ip == client_ip))
        return result.scalar()


@pytest.mark.asyncio
async def test_concurrent_requests_from_one_ip_cannot_exceed_quota(session_maker):
    for _ in range(4):
        await _consume(session_maker, "10.0.0.9")

    results = await asyncio.gather(*(_consume(session_maker, "10.0.0.9") for _ in range(5)), return_exceptions=True)

    assert [result for result in results if not isinstance(result, Exception)] == [0]
    assert all(isinstance(result, RateLimitError) for result in results if isinstance(result, Exception))
    assert await _log_count(session_maker, "10.0.0.9") == 5


@pytest.mark.asyncio
async def test_concurrent_first_requests_share_one_window(session_maker):
    results = await asyncio.gather(*(_consume(session_maker, "10.0.0.7", limit=2) for _ in range(4)), return_exceptions=True)

    assert sorted(result for result in results if not isinstance(result, Exception)) == [0, 1]
    assert sum(isinstance(result, RateLimitError) for result in results) == 2
    async with session_maker() as session:
        windows = (await session.execute(select(PublicQuotaWindow))).scalars().all()
    assert [(window.client_ip, window.used) for window in windows] == [("10.0.0.7", 2)]


@pytest.mark.asyncio
async def test_quota_window_restarts_after_an_hour(session_maker):
    assert await _consume(session_maker, "10.0.0.8", limit=1) == 0
    with pytest.raises(RateLimitError):
        await _consume(session_maker, "10.0.0.8", limit=1)

    async with session_maker() as session:
        await session.execute(
            update(PublicQuotaWindow)
            .where(PublicQuotaWindow.client_ip == "10.0.0.8")
            .values(window_started_at=datetime.now(timezone.utc) - timedelta(hours=2))
        )
        await session.commit()

    assert await _consume(session_maker, "10.0.0.8", limit=1) == 0
    assert await _log_count(session_maker, "10.0.0.8") == 2
