"""Generation orchestration: classify, authorize, invoke, then charge or release."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from services import credits
from services.errors import (
    AuthError,
    InsufficientCreditsError,
    NotFoundError,
    PlanCapabilityError,
    ServiceError,
    ValidationError,
)
from services.features import (
    FeatureType,
    ReferenceImage,
    classify_feature,
    compose_tryon_instruction,
    request_shape,
)
from services.provider import Artifact, translate_provider_error
from services.public_access import consume_public_quota
from services.video_jobs import VideoJobRunner, VideoRequest, record_delivery, withhold_delivery

logger = logging.getLogger(__name__)

PUBLIC_FEATURES = frozenset({FeatureType.TEXT, FeatureType.IMAGE, FeatureType.TRY_ON, FeatureType.AVATAR})

STOREFRONT_PAUSED_MESSAGE = "This storefront has paused virtual try-on temporarily."
STOREFRONT_LIMIT_MESSAGE = "This store has reached its try-on limit. Try again later."


@dataclass
class Caller:
    """Who pays for a request: an authenticated account or a public storefront's owner."""

    account_id: str
    public: bool = False
    store_slug: Optional[str] = None
    client_ip: Optional[str] = None


@dataclass
class GenerationRequest:
    endpoint: str
    prompt: str
    images: List[ReferenceImage] = field(default_factory=list)
    aspect_ratio: Optional[str] = None
    system_instruction: Optional[str] = None
    json_mode: bool = False
    use_pro_model: bool = False
    avatar: bool = False


def default_video_runner(db: AsyncSession, provider, storage) -> VideoJobRunner:
    return VideoJobRunner(
        db,
        provider,
        storage,
        poll_interval_seconds=settings.VIDEO_POLL_INTERVAL_SECONDS,
        timeout_seconds=settings.VIDEO_MAX_WAIT_SECONDS,
    )


class GenerationOrchestrator:
    """One instance per request; collaborators are injected."""

    def __init__(
        self,
        db: AsyncSession,
        provider,
        storage,
        *,
        video_runner_factory: Callable[..., VideoJobRunner] = default_video_runner,
    ):
        self.db = db
        self.provider = provider
        self.storage = storage
        self.video_runner_factory = video_runner_factory

    def classify(self, request: GenerationRequest) -> FeatureType:
        return classify_feature(request_shape(request.endpoint, request.prompt, request.images, request.avatar))

    @staticmethod
    def _storefront_safe(caller: Caller, exc: ServiceError) -> ServiceError:
        """Anonymous shoppers never see the owner's balance or plan."""
        if not caller.public:
            return exc
        if isinstance(exc, (InsufficientCreditsError, PlanCapabilityError)):
            return type(exc)(STOREFRONT_PAUSED_MESSAGE)
        if isinstance(exc, NotFoundError):
            return NotFoundError(STOREFRONT_LIMIT_MESSAGE)
        return exc

    async def _authorize(self, caller: Caller, feature: FeatureType) -> credits.Authorization:
        try:
            return await credits.authorize(caller.account_id, feature, self.db)
        except (InsufficientCreditsError, PlanCapabilityError, NotFoundError) as exc:
            error = self._storefront_safe(caller, exc)
            if error is exc:
                raise
            raise error from exc

    async def _settle(self, caller: Caller, authorization: credits.Authorization, artifact: Artifact) -> None:
        """Charge and publish the artifact in one commit; on a failed re-check the artifact is withheld."""
        try:
            await credits.charge(authorization, self.db, reference_id=artifact.job_id, commit=False)
            if artifact.job_id and artifact.url:
                await record_delivery(self.db, artifact.job_id, artifact.url)
            await self.db.commit()
        except InsufficientCreditsError as exc:
            await self.db.rollback()
            if artifact.job_id:
                await withhold_delivery(self.db, self.storage, artifact.job_id, artifact.url, exc)
            error = self._storefront_safe(caller, exc)
            if error is exc:
                raise
            raise error from exc
        except Exception:
            await self.db.rollback()
            raise

    async def generate(self, caller: Caller, request: GenerationRequest) -> Artifact:
        if not (request.prompt or "").strip():
            raise ValidationError("prompt is required.")

        feature = self.classify(request)
        if caller.public:
            if feature not in PUBLIC_FEATURES:
                raise AuthError("Sign in to use this feature.")
            await consume_public_quota(caller.client_ip or "unknown", caller.store_slug or "", feature.value, self.db)

        authorization = await self._authorize(caller, feature)
        # No transaction stays open across the provider call.
        await self.db.rollback()

        try:
            artifact = await self._invoke(feature, caller, request)
        except Exception as exc:
            credits.release(authorization)
            error = translate_provider_error(exc)
            logger.warning(
                "Generation failed account=%s feature=%s code=%s: %s",
                caller.account_id,
                feature.value,
                error.code,
                exc,
            )
            if error is exc:
                raise
            raise error from exc

        await self._settle(caller, authorization, artifact)
        return artifact

    async def _invoke(self, feature: FeatureType, caller: Caller, request: GenerationRequest) -> Artifact:
        if feature == FeatureType.TEXT:
            text = await self.provider.generate_text(
                request.prompt,
                system_instruction=request.system_instruction,
                json_mode=request.json_mode,
            )
            return Artifact(kind="text", text=text)

        if feature == FeatureType.VIDEO:
            runner = self.video_runner_factory(self.db, self.provider, self.storage)
            video_request = VideoRequest(
                prompt=request.prompt,
                image=request.images[0] if request.images else None,
                aspect_ratio=request.aspect_ratio or "9:16",
            )
            return await runner.run(caller.account_id, video_request)

        composed = compose_tryon_instruction(request.prompt, request.images)
        return await self.provider.generate_image(
            composed.prompt,
            composed.images,
            aspect_ratio=request.aspect_ratio or "1:1",
            use_pro_model=request.use_pro_model,
        )
