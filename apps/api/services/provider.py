"""Generative provider adapter and provider error translation."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import httpx
import openai
from openai import AsyncOpenAI

from services.errors import (
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    ServiceError,
    ValidationError,
)
from services.features import ReferenceImage

logger = logging.getLogger(__name__)

IMAGE_SIZES = {
    "1:1": "1024x1024",
    "3:4": "1024x1536",
    "2:3": "1024x1536",
    "9:16": "1024x1536",
    "4:3": "1536x1024",
    "3:2": "1536x1024",
    "16:9": "1536x1024",
}
VIDEO_SIZES = {
    "9:16": "720x1280",
    "16:9": "1280x720",
}

_RATE_LIMIT_SIGNATURES = ("resource_exhausted", "rate limit", "rate_limit", "quota", "429")
_UNAVAILABLE_SIGNATURES = ("unavailable", "overloaded", "503", "529")
_TIMEOUT_SIGNATURES = ("deadline", "timed out", "timeout")
_SAFETY_SIGNATURES = ("safety", "moderation", "content_policy", "policy_violation")


@dataclass
class Artifact:
    """Generation output: inline text, inline bytes, or a stored URL."""

    kind: str
    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    url: Optional[str] = None
    job_id: Optional[str] = None

    def data_uri(self) -> Optional[str]:
        if self.data is None:
            return None
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type or 'application/octet-stream'};base64,{encoded}"


@dataclass
class VideoStatus:
    done: bool
    failed: bool = False
    error: Optional[str] = None
    progress: Optional[int] = None


def translate_provider_error(exc: BaseException) -> ServiceError:
    """Classify an opaque provider failure into the service error taxonomy."""
    if isinstance(exc, ServiceError):
        return exc

    message = str(exc) or exc.__class__.__name__
    lowered = message.lower()
    status = getattr(exc, "status_code", None)

    if isinstance(exc, openai.RateLimitError) or status == 429:
        return RateLimitError("The generation provider is rate limiting requests. Try again shortly.")
    if isinstance(exc, (openai.APITimeoutError, httpx.TimeoutException)):
        return ProviderTimeoutError("The generation provider timed out. No credits were charged.")
    if isinstance(exc, openai.APIConnectionError) or status in (502, 503, 529):
        return ProviderUnavailableError()
    if isinstance(exc, openai.BadRequestError) and any(sig in lowered for sig in _SAFETY_SIGNATURES):
        return ValidationError("The request was rejected by the provider's content policy.")

    if any(sig in lowered for sig in _RATE_LIMIT_SIGNATURES):
        return RateLimitError("The generation provider is rate limiting requests. Try again shortly.")
    if any(sig in lowered for sig in _UNAVAILABLE_SIGNATURES):
        return ProviderUnavailableError()
    if any(sig in lowered for sig in _TIMEOUT_SIGNATURES):
        return ProviderTimeoutError("The generation provider timed out. No credits were charged.")
    if any(sig in lowered for sig in _SAFETY_SIGNATURES):
        return ValidationError("The request was rejected by the provider's content policy.")

    return ProviderError(f"Generation failed: {message[:300]}")


def decode_image(image: ReferenceImage) -> bytes:
    raw = image.data or ""
    if raw.startswith("data:") and "," in raw:
        raw = raw.split(",", 1)[1]
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Reference image data must be base64 encoded.") from exc


def _image_file(index: int, image: ReferenceImage):
    extension = (image.mime_type or "image/png").split("/")[-1] or "png"
    return (f"reference_{index}.{extension}", decode_image(image), image.mime_type or "image/png")


def get_openai_client(api_key: str, timeout_seconds: float) -> Optional[AsyncOpenAI]:
    """Get OpenAI client, handling placeholders."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return AsyncOpenAI(api_key=api_key, timeout=timeout_seconds)


class OpenAIGenerationProvider:
    """Text, image, and video generation through the OpenAI API."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI],
        *,
        text_model: str,
        image_model: str,
        image_pro_model: str,
        video_model: str,
    ):
        self.client = client
        self.text_model = text_model
        self.image_model = image_model
        self.image_pro_model = image_pro_model
        self.video_model = video_model

    def _require_client(self) -> AsyncOpenAI:
        if self.client is None:
            raise ProviderUnavailableError("The generation provider is not configured.")
        return self.client

    async def generate_text(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        client = self._require_client()
        messages: List[dict] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict = {"model": self.text_model, "messages": messages}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProviderError("No text generated.")
        return content

    async def generate_image(
        self,
        prompt: str,
        images: Sequence[ReferenceImage] = (),
        aspect_ratio: str = "1:1",
        use_pro_model: bool = False,
    ) -> Artifact:
        client = self._require_client()
        model = self.image_pro_model if use_pro_model else self.image_model
        size = IMAGE_SIZES.get(aspect_ratio, "1024x1024")
        quality = "high" if use_pro_model else "medium"

        if images:
            files = [_image_file(index, image) for index, image in enumerate(images, start=1)]
            response = await client.images.edit(model=model, image=files, prompt=prompt, size=size, quality=quality)
        else:
            response = await client.images.generate(model=model, prompt=prompt, size=size, quality=quality, n=1)

        payload = response.data[0].b64_json if response.data else None
        if not payload:
            raise ProviderError("No image generated.")
        return Artifact(kind="image", data=base64.b64decode(payload), mime_type="image/png")

    async def submit_video(
        self,
        prompt: str,
        image: Optional[ReferenceImage] = None,
        aspect_ratio: str = "9:16",
    ) -> str:
        client = self._require_client()
        kwargs: dict = {
            "model": self.video_model,
            "prompt": prompt,
            "size": VIDEO_SIZES.get(aspect_ratio, "720x1280"),
        }
        if image is not None:
            kwargs["input_reference"] = _image_file(1, image)
        video = await client.videos.create(**kwargs)
        return video.id

    async def poll_video(self, handle: str) -> VideoStatus:
        client = self._require_client()
        video = await client.videos.retrieve(handle)
        status = str(getattr(video, "status", "") or "")
        if status == "completed":
            return VideoStatus(done=True)
        if status == "failed":
            error = getattr(video, "error", None)
            message = getattr(error, "message", None) or str(error or "Video generation failed.")
            return VideoStatus(done=True, failed=True, error=message)
        return VideoStatus(done=False, progress=getattr(video, "progress", None))

    async def download_video(self, handle: str) -> Artifact:
        client = self._require_client()
        content = await client.videos.download_content(handle, variant="video")
        data = content.content
        if not data:
            raise ProviderError("Video generation returned no content.")
        return Artifact(kind="video", data=data, mime_type="video/mp4")


def build_generation_provider(settings: Any) -> OpenAIGenerationProvider:
    client = get_openai_client(settings.OPENAI_API_KEY, settings.PROVIDER_TIMEOUT_SECONDS)
    if client is None:
        logger.warning("OPENAI_API_KEY not configured; generation endpoints will report provider unavailable.")
    return OpenAIGenerationProvider(
        client,
        text_model=settings.TEXT_MODEL,
        image_model=settings.IMAGE_MODEL,
        image_pro_model=settings.IMAGE_PRO_MODEL,
        video_model=settings.VIDEO_MODEL,
    )
