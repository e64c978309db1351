"""Generation router: text, image and video endpoints metered by the credit ledger."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.generation_job import GenerationJob
from routers.auth_scope import AuthContext, get_auth_context, get_caller
from routers.dependencies import get_artifact_storage, get_generation_provider
from services.errors import AuthError, NotFoundError
from services.features import IMAGE_ROLES, ReferenceImage
from services.generation import Caller, GenerationOrchestrator, GenerationRequest
from services.provider import Artifact

router = APIRouter()


class ImagePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: str = Field(min_length=1)
    mime_type: str = Field(default="image/png", alias="mimeType")
    role: Optional[str] = None
    label: Optional[str] = None

    @field_validator("role")
    @classmethod
    def _known_role(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in IMAGE_ROLES:
            raise ValueError(f"role must be one of {', '.join(IMAGE_ROLES)}")
        return value

    def to_reference(self) -> ReferenceImage:
        return ReferenceImage(data=self.data, mime_type=self.mime_type, role=self.role, label=self.label)


class TextGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(default="", max_length=20000)
    system_instruction: Optional[str] = Field(default=None, alias="systemInstruction")
    json_schema: Optional[Dict[str, Any]] = Field(default=None, alias="jsonSchema")


class ImageGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(default="", max_length=20000)
    images: List[ImagePayload] = Field(default_factory=list, max_length=8)
    aspect_ratio: Optional[str] = Field(default=None, alias="aspectRatio")
    use_pro_model: bool = Field(default=False, alias="useProModel")
    avatar: bool = False


class VideoGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(default="", max_length=20000)
    image: Optional[ImagePayload] = None
    aspect_ratio: Optional[str] = Field(default=None, alias="aspectRatio")


def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    provider=Depends(get_generation_provider),
    storage=Depends(get_artifact_storage),
) -> GenerationOrchestrator:
    return GenerationOrchestrator(db, provider, storage)


def _system_instruction(body: TextGenerationRequest) -> Optional[str]:
    if body.json_schema is None:
        return body.system_instruction
    schema_hint = "Respond with JSON matching this schema:\n" + json.dumps(body.json_schema)
    if body.system_instruction:
        return f"{body.system_instruction}\n\n{schema_hint}"
    return schema_hint


def _image_data(artifact: Artifact) -> Dict[str, Any]:
    return {
        "image": artifact.url or artifact.data_uri(),
        "mimeType": artifact.mime_type,
    }


@router.post("/text")
async def generate_text(
    body: TextGenerationRequest,
    caller: Caller = Depends(get_caller),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    artifact = await orchestrator.generate(
        caller,
        GenerationRequest(
            endpoint="text",
            prompt=body.prompt,
            system_instruction=_system_instruction(body),
            json_mode=body.json_schema is not None,
        ),
    )
    return {"success": True, "data": {"text": artifact.text}}


@router.post("/image")
async def generate_image(
    body: ImageGenerationRequest,
    caller: Caller = Depends(get_caller),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    artifact = await orchestrator.generate(
        caller,
        GenerationRequest(
            endpoint="image",
            prompt=body.prompt,
            images=[image.to_reference() for image in body.images],
            aspect_ratio=body.aspect_ratio,
            use_pro_model=body.use_pro_model,
            avatar=body.avatar,
        ),
    )
    return {"success": True, "data": _image_data(artifact)}


@router.post("/video")
async def generate_video(
    body: VideoGenerationRequest,
    caller: Caller = Depends(get_caller),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    if caller.public:
        raise AuthError("Sign in to generate video.")

    artifact = await orchestrator.generate(
        caller,
        GenerationRequest(
            endpoint="video",
            prompt=body.prompt,
            images=[body.image.to_reference()] if body.image else [],
            aspect_ratio=body.aspect_ratio,
        ),
    )
    return {
        "success": True,
        "data": {"videoUrl": artifact.url, "jobId": artifact.job_id, "mimeType": artifact.mime_type},
    }


@router.get("/video/jobs/{job_id}")
async def video_job_status(
    job_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(GenerationJob).where(GenerationJob.id == job_id, GenerationJob.account_id == auth.account_id)
    )
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError("Video job not found.")

    return {
        "success": True,
        "data": {
            "jobId": job.id,
            "state": job.state,
            "attemptCount": job.attempt_count,
            "lastPolledAt": job.last_polled_at.isoformat() if job.last_polled_at else None,
            "errorCode": job.error_code,
            "errorMessage": job.error_message,
            "videoUrl": job.artifact_url,
            "completedAt": job.completed_at.isoformat() if job.completed_at else None,
        },
    }
