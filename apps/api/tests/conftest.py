import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.account import Account
from models.subscription import Subscription
from routers import rate_limit
from routers.dependencies import get_artifact_storage, get_generation_provider, get_payment_gateway
from services.payments import StripeGateway
from services.plans import seed_default_plans
from services.provider import Artifact, VideoStatus
from services.storage import LocalArtifactStorage


TEST_WEBHOOK_SECRET = "whsec_test_secret"


class FakeProvider:
    """Records calls; each method can be primed with a result or an exception.

    ``during_call`` is awaited with the method name while a generation is in
    flight, so tests can change state between authorize and charge.
    """

    def __init__(self):
        self.calls = []
        self.text_result = "generated copy"
        self.image_result = Artifact(kind="image", data=b"\x89PNG fake", mime_type="image/png")
        self.video_statuses = [VideoStatus(done=True)]
        self.video_bytes = b"fake-mp4"
        self.error = None
        self.during_call = None

    def _record(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if self.error is not None:
            raise self.error

    async def generate_text(self, prompt, system_instruction=None, json_mode=False):
        self._record("generate_text", prompt=prompt, system_instruction=system_instruction, json_mode=json_mode)
        await self._during("generate_text")
        return self.text_result

    async def generate_image(self, prompt, images=(), aspect_ratio="1:1", use_pro_model=False):
        self._record("generate_image", prompt=prompt, images=list(images), aspect_ratio=aspect_ratio)
        await self._during("generate_image")
        return self.image_result

    async def submit_video(self, prompt, image=None, aspect_ratio="9:16"):
        self._record("submit_video", prompt=prompt, image=image, aspect_ratio=aspect_ratio)
        return "video_handle_1"

    async def poll_video(self, handle):
        self.calls.append(("poll_video", {"handle": handle}))
        if len(self.video_statuses) > 1:
            return self.video_statuses.pop(0)
        return self.video_statuses[0]

    async def download_video(self, handle):
        self.calls.append(("download_video", {"handle": handle}))
        await self._during("download_video")
        return Artifact(kind="video", data=self.video_bytes, mime_type="video/mp4")

    async def _during(self, name):
        if self.during_call is not None:
            await self.during_call(name)

    def called(self, name):
        return [kwargs for call, kwargs in self.calls if call == name]


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "lumiere.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", connect_args={"timeout": 30})
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with maker() as session:
        await seed_default_plans(session)

    yield maker
    await engine.dispose()


@pytest.fixture
def seed_subscription(session_maker):
    async def _seed(
        account_id,
        plan_id="pro",
        balance=0,
        videos_used=0,
        store_slug=None,
        external_subscription_id=None,
    ):
        async with session_maker() as session:
            session.add(Account(id=account_id, email=f"{account_id}@example.com", store_slug=store_slug))
            session.add(
                Subscription(
                    account_id=account_id,
                    plan_id=plan_id,
                    external_subscription_id=external_subscription_id,
                    status="active",
                    credit_balance=balance,
                    videos_used_this_period=videos_used,
                )
            )
            await session.commit()

    return _seed


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def payment_gateway():
    return StripeGateway("sk_test_123", TEST_WEBHOOK_SECRET, tolerance_seconds=300)


@pytest_asyncio.fixture
async def api_client(session_maker, fake_provider, payment_gateway, tmp_path):
    storage = LocalArtifactStorage(str(tmp_path / "artifacts"), "/artifacts")

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_generation_provider] = lambda: fake_provider
    app.dependency_overrides[get_payment_gateway] = lambda: payment_gateway
    app.dependency_overrides[get_artifact_storage] = lambda: storage
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    for dependency in (get_db, get_generation_provider, get_payment_gateway, get_artifact_storage):
        app.dependency_overrides.pop(dependency, None)
