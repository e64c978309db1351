import pytest
from sqlalchemy import update
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from models.generation_job import GenerationJob
from models.subscription import Subscription
from services.errors import InsufficientCreditsError, ProviderTimeoutError, ProviderUnavailableError, ValidationError
from services.generation import Caller, GenerationOrchestrator, GenerationRequest
from services.provider import VideoStatus
from services.storage import LocalArtifactStorage
from services.video_jobs import (
    InvalidJobTransition,
    VideoJobRunner,
    VideoJobState,
    VideoRequest,
    ensure_transition,
)


ACCOUNT_ID = "video-account"


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path):
    return LocalArtifactStorage(str(tmp_path / "artifacts"), "/artifacts")


def _runner(session, provider, storage, clock, timeout_seconds=60.0):
    return VideoJobRunner(
        session,
        provider,
        storage,
        poll_interval_seconds=5.0,
        timeout_seconds=timeout_seconds,
        sleep=clock.sleep,
        clock=clock,
    )


async def _jobs(session_maker):
    async with session_maker() as session:
        result = await session.execute(select(GenerationJob).where(GenerationJob.account_id == ACCOUNT_ID))
        return result.scalars().all()


def test_terminal_states_reject_further_transitions():
    ensure_transition("submitted", VideoJobState.POLLING)
    ensure_transition("polling", VideoJobState.POLLING)
    with pytest.raises(InvalidJobTransition):
        ensure_transition("succeeded", VideoJobState.POLLING)
    with pytest.raises(InvalidJobTransition):
        ensure_transition("failed", VideoJobState.SUCCEEDED)
    with pytest.raises(InvalidJobTransition):
        ensure_transition("submitted", VideoJobState.SUCCEEDED)


@pytest.mark.asyncio
async def test_video_job_succeeds_and_stores_artifact(session_maker, seed_subscription, fake_provider, storage, clock, tmp_path):
    await seed_subscription(ACCOUNT_ID, plan_id="pro", balance=100)
    fake_provider.video_statuses = [VideoStatus(done=False, progress=40), VideoStatus(done=False), VideoStatus(done=True)]

    async with session_maker() as session:
        artifact = await _runner(session, fake_provider, storage, clock).run(ACCOUNT_ID, VideoRequest(prompt="spin"))

    assert artifact.kind == "video"
    assert artifact.url.startswith(f"/artifacts/{ACCOUNT_ID}/")
    assert artifact.url.endswith(".mp4")
    stored = tmp_path / "artifacts" / artifact.url.split("/artifacts/", 1)[1]
    assert stored.read_bytes() == b"fake-mp4"

    jobs = await _jobs(session_maker)
    assert len(jobs) == 1
    assert jobs[0].id == artifact.job_id
    assert jobs[0].state == "succeeded"
    assert jobs[0].attempt_count == 3
    assert jobs[0].provider_job_handle == "video_handle_1"
    assert jobs[0].completed_at is not None
    assert jobs[0].artifact_url is None
    assert clock.sleeps == [5.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_video_job_times_out_when_provider_never_finishes(session_maker, seed_subscription, fake_provider, storage, clock):
    await seed_subscription(ACCOUNT_ID, plan_id="pro", balance=100)
    fake_provider.video_statuses = [VideoStatus(done=False)]

    async with session_maker() as session:
        with pytest.raises(ProviderTimeoutError) as exc_info:
            await _runner(session, fake_provider, storage, clock).run(ACCOUNT_ID, VideoRequest(prompt="spin"))

    jobs = await _jobs(session_maker)
    assert exc_info.value.details["job_id"] == jobs[0].id
    assert jobs[0].state == "failed"
    assert jobs[0].error_code == "provider_timeout"
    assert jobs[0].attempt_count == 12
    assert clock.now <= 60.0
    assert fake_provider.called("download_video") == []


@pytest.mark.asyncio
async def test_video_job_records_provider_failure(session_maker, seed_subscription, fake_provider, storage, clock):
    await seed_subscription(ACCOUNT_ID, plan_id="pro", balance=100)
    fake_provider.video_statuses = [VideoStatus(done=True, failed=True, error="content_policy violation detected")]

    async with session_maker() as session:
        with pytest.raises(ValidationError):
            await _runner(session, fake_provider, storage, clock).run(ACCOUNT_ID, VideoRequest(prompt="spin"))

    jobs = await _jobs(session_maker)
    assert jobs[0].state == "failed"
    assert jobs[0].error_code == "validation_error"
    assert jobs[0].attempt_count == 1


@pytest.mark.asyncio
async def test_rejected_submission_creates_no_job(session_maker, seed_subscription, fake_provider, storage, clock):
    await seed_subscription(ACCOUNT_ID, plan_id="pro", balance=100)
    fake_provider.error = RuntimeError("503 UNAVAILABLE: model overloaded")

    async with session_maker() as session:
        with pytest.raises(ProviderUnavailableError):
            await _runner(session, fake_provider, storage, clock).run(ACCOUNT_ID, VideoRequest(prompt="spin"))

    assert await _jobs(session_maker) == []


@pytest.mark.asyncio
async def test_timed_out_video_is_never_charged(session_maker, seed_subscription, fake_provider, storage, clock):
    await seed_subscription(ACCOUNT_ID, plan_id="pro", balance=100, videos_used=1)
    fake_provider.video_statuses = [VideoStatus(done=False)]

    def runner_factory(db, provider, artifact_storage):
        return _runner(db, provider, artifact_storage, clock)

    async with session_maker() as session:
        orchestrator = GenerationOrchestrator(session, fake_provider, storage, video_runner_factory=runner_factory)
        with pytest.raises(ProviderTimeoutError):
            await orchestrator.generate(Caller(account_id=ACCOUNT_ID), GenerationRequest(endpoint="video", prompt="spin"))

    async with session_maker() as session:
        subscription = (
            await session.execute(select(Subscription).where(Subscription.account_id == ACCOUNT_ID))
        ).scalar_one()
        ledger = (
            await session.execute(select(CreditTransaction).where(CreditTransaction.account_id == ACCOUNT_ID))
        ).scalars().all()

    assert subscription.credit_balance == 100
    assert subscription.videos_used_this_period == 1
    assert ledger == []


@pytest.mark.asyncio
async def test_paid_video_is_published_on_the_job(session_maker, seed_subscription, fake_provider, storage, clock):
    await seed_subscription(ACCOUNT_ID, plan_id="pro", balance=100)

    def runner_factory(db, provider, artifact_storage):
        return _runner(db, provider, artifact_storage, clock)

    async with session_maker() as session:
        orchestrator = GenerationOrchestrator(session, fake_provider, storage, video_runner_factory=runner_factory)
        artifact = await orchestrator.generate(Caller(account_id=ACCOUNT_ID), GenerationRequest(endpoint="video", prompt="spin"))

    jobs = await _jobs(session_maker)
    assert jobs[0].artifact_url == artifact.url
    assert jobs[0].error_code is None


@pytest.mark.asyncio
async def test_video_is_withheld_when_balance_drops_before_charge(
    session_maker, seed_subscription, fake_provider, storage, clock, tmp_path
):
    await seed_subscription(ACCOUNT_ID, plan_id="pro", balance=40)

    async def spend_elsewhere(name):
        if name == "download_video":
            async with session_maker() as other:
                await other.execute(
                    update(Subscription).where(Subscription.account_id == ACCOUNT_ID).values(credit_balance=10)
                )
                await other.commit()

    fake_provider.during_call = spend_elsewhere

    def runner_factory(db, provider, artifact_storage):
        return _runner(db, provider, artifact_storage, clock)

    async with session_maker() as session:
        orchestrator = GenerationOrchestrator(session, fake_provider, storage, video_runner_factory=runner_factory)
        with pytest.raises(InsufficientCreditsError):
            await orchestrator.generate(Caller(account_id=ACCOUNT_ID), GenerationRequest(endpoint="video", prompt="spin"))

    jobs = await _jobs(session_maker)
    assert len(jobs) == 1
    assert jobs[0].state == "succeeded"
    assert jobs[0].artifact_url is None
    assert jobs[0].error_code == "insufficient_credits"
    assert list((tmp_path / "artifacts").rglob("*.mp4")) == []

    async with session_maker() as session:
        subscription = (
            await session.execute(select(Subscription).where(Subscription.account_id == ACCOUNT_ID))
        ).scalar_one()
        ledger = (
            await session.execute(select(CreditTransaction).where(CreditTransaction.account_id == ACCOUNT_ID))
        ).scalars().all()
    assert subscription.credit_balance == 10
    assert subscription.videos_used_this_period == 0
    assert ledger == []


def test_storage_refuses_urls_outside_its_root(storage):
    with pytest.raises(ValueError):
        storage.path_for("/elsewhere/video-account/clip.mp4")
    with pytest.raises(ValueError):
        storage.path_for("/artifacts/../../etc/passwd")
