"""Bounded polling state machine for long-running video generation jobs."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from models.generation_job import GenerationJob
from services.errors import ProviderTimeoutError, ServiceError
from services.features import ReferenceImage
from services.provider import Artifact, translate_provider_error

logger = logging.getLogger(__name__)


class VideoJobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES: FrozenSet[VideoJobState] = frozenset({VideoJobState.SUCCEEDED, VideoJobState.FAILED})

ALLOWED_TRANSITIONS: Dict[VideoJobState, FrozenSet[VideoJobState]] = {
    VideoJobState.SUBMITTED: frozenset({VideoJobState.POLLING, VideoJobState.FAILED}),
    VideoJobState.POLLING: frozenset({VideoJobState.POLLING, VideoJobState.SUCCEEDED, VideoJobState.FAILED}),
    VideoJobState.SUCCEEDED: frozenset(),
    VideoJobState.FAILED: frozenset(),
}


class InvalidJobTransition(RuntimeError):
    pass


def ensure_transition(current: str, target: VideoJobState) -> None:
    source = VideoJobState(current)
    if target not in ALLOWED_TRANSITIONS[source]:
        raise InvalidJobTransition(f"Cannot move video job from {source.value} to {target.value}")


async def record_delivery(db: AsyncSession, job_id: str, artifact_url: str) -> None:
    """Publish the artifact URL on a succeeded job. Not committed; the caller commits with the charge."""
    await db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job_id, GenerationJob.state == VideoJobState.SUCCEEDED.value)
        .values(artifact_url=artifact_url)
        .execution_options(synchronize_session=False)
    )


async def withhold_delivery(
    db: AsyncSession,
    storage,
    job_id: str,
    artifact_url: Optional[str],
    error: ServiceError,
) -> None:
    """Mark a finished job as undelivered and remove its stored file."""
    await db.execute(
        update(GenerationJob)
        .where(GenerationJob.id == job_id)
        .values(artifact_url=None, error_code=error.code, error_message=error.message[:1000])
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if artifact_url:
        await storage.delete(artifact_url)
    logger.warning("Video job %s withheld: %s", job_id, error.code)


@dataclass
class VideoRequest:
    prompt: str
    image: Optional[ReferenceImage] = None
    aspect_ratio: str = "9:16"


class VideoJobRunner:
    """
    Submit a video job and poll it until a terminal provider state.

    Polls every ``poll_interval_seconds``; when the next poll would land past
    ``timeout_seconds`` (measured from submission) the job fails with
    ``ProviderTimeoutError``. Every transition is committed so the job row can
    be read while the request is still running. A succeeded job carries no
    ``artifact_url`` until ``record_delivery`` runs after the charge.
    """

    def __init__(
        self,
        db: AsyncSession,
        provider,
        storage,
        *,
        poll_interval_seconds: float = 5.0,
        timeout_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.provider = provider
        self.storage = storage
        self.poll_interval_seconds = max(float(poll_interval_seconds), 0.0)
        self.timeout_seconds = max(float(timeout_seconds), 0.0)
        self.sleep = sleep
        self.clock = clock

    async def _transition(
        self,
        job: GenerationJob,
        target: VideoJobState,
        *,
        polled: bool = False,
        error: Optional[ServiceError] = None,
    ) -> None:
        ensure_transition(job.state, target)
        now = datetime.now(timezone.utc)
        job.state = target.value
        if polled:
            job.attempt_count = int(job.attempt_count or 0) + 1
            job.last_polled_at = now
        if error is not None:
            job.error_code = error.code
            job.error_message = error.message[:1000]
        if target in TERMINAL_STATES:
            job.completed_at = now
        await self.db.commit()

    async def _fail(self, job: GenerationJob, error: ServiceError) -> ServiceError:
        await self._transition(job, VideoJobState.FAILED, error=error)
        logger.warning("Video job %s failed after %s polls: %s", job.id, job.attempt_count, error.message)
        return error

    async def run(self, account_id: str, request: VideoRequest) -> Artifact:
        started = self.clock()
        try:
            handle = await self.provider.submit_video(request.prompt, request.image, request.aspect_ratio)
        except Exception as exc:
            raise translate_provider_error(exc) from exc

        job = GenerationJob(
            id=str(uuid.uuid4()),
            account_id=account_id,
            feature_type="video",
            state=VideoJobState.SUBMITTED.value,
            provider_job_handle=str(handle),
            attempt_count=0,
        )
        self.db.add(job)
        await self.db.commit()
        logger.info("Video job %s submitted (provider handle %s)", job.id, handle)

        await self._transition(job, VideoJobState.POLLING)
        deadline = started + self.timeout_seconds
        while True:
            if self.clock() + self.poll_interval_seconds > deadline:
                raise await self._fail(
                    job,
                    ProviderTimeoutError(
                        f"Video generation did not finish within {int(self.timeout_seconds)}s. "
                        "No credits were charged.",
                        job_id=job.id,
                    ),
                )

            await self.sleep(self.poll_interval_seconds)
            try:
                status = await self.provider.poll_video(job.provider_job_handle)
            except Exception as exc:
                raise await self._fail(job, translate_provider_error(exc)) from exc

            if not status.done:
                await self._transition(job, VideoJobState.POLLING, polled=True)
                continue

            job.attempt_count = int(job.attempt_count or 0) + 1
            job.last_polled_at = datetime.now(timezone.utc)
            if status.failed:
                raise await self._fail(job, translate_provider_error(RuntimeError(status.error or "Video generation failed.")))

            try:
                artifact = await self.provider.download_video(job.provider_job_handle)
                url = await self.storage.upload(artifact.data, artifact.mime_type or "video/mp4", owner_id=account_id)
            except Exception as exc:
                raise await self._fail(job, translate_provider_error(exc)) from exc

            await self._transition(job, VideoJobState.SUCCEEDED)
            logger.info("Video job %s succeeded after %s polls", job.id, job.attempt_count)
            return Artifact(kind="video", url=url, mime_type=artifact.mime_type or "video/mp4", job_id=job.id)
