import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from services.errors import (
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitError,
    ValidationError,
)
from services.features import ReferenceImage
from services.provider import OpenAIGenerationProvider, decode_image, translate_provider_error


REQUEST = httpx.Request("POST", "https://api.openai.com/v1/responses")


def _response(status):
    return httpx.Response(status, request=REQUEST)


def _provider(client):
    return OpenAIGenerationProvider(
        client,
        text_model="text-model",
        image_model="image-model",
        image_pro_model="image-pro-model",
        video_model="video-model",
    )


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (openai.RateLimitError("slow down", response=_response(429), body=None), RateLimitError),
        (RuntimeError("RESOURCE_EXHAUSTED: quota exceeded"), RateLimitError),
        (openai.APITimeoutError(request=REQUEST), ProviderTimeoutError),
        (RuntimeError("Deadline exceeded while waiting"), ProviderTimeoutError),
        (openai.APIConnectionError(request=REQUEST), ProviderUnavailableError),
        (openai.InternalServerError("busy", response=_response(503), body=None), ProviderUnavailableError),
        (RuntimeError("model is overloaded"), ProviderUnavailableError),
        (
            openai.BadRequestError("Your request was rejected by the safety system", response=_response(400), body=None),
            ValidationError,
        ),
        (openai.InternalServerError("boom", response=_response(500), body=None), ProviderError),
        (RuntimeError("something odd"), ProviderError),
    ],
)
def test_provider_failures_map_to_service_errors(exc, expected):
    assert type(translate_provider_error(exc)) is expected


def test_translated_errors_pass_through_unchanged():
    original = ProviderTimeoutError("already classified")

    assert translate_provider_error(original) is original


def test_decode_image_accepts_data_uri_and_rejects_garbage():
    image = ReferenceImage(data="data:image/png;base64," + base64.b64encode(b"png").decode(), mime_type="image/png")

    assert decode_image(image) == b"png"
    with pytest.raises(ValidationError):
        decode_image(ReferenceImage(data="not base64!!", mime_type="image/png"))


@pytest.mark.asyncio
async def test_unconfigured_provider_reports_unavailable():
    with pytest.raises(ProviderUnavailableError):
        await _provider(None).generate_text("hello")


@pytest.mark.asyncio
async def test_generate_text_sends_system_instruction_and_json_mode():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"ok": true}'))])
    )

    text = await _provider(client).generate_text("hello", system_instruction="be terse", json_mode=True)

    assert text == '{"ok": true}'
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "text-model"
    assert kwargs["messages"][0] == {"role": "system", "content": "be terse"}
    assert kwargs["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_generate_image_uses_edit_endpoint_for_references():
    client = MagicMock()
    payload = base64.b64encode(b"image-bytes").decode()
    client.images.edit = AsyncMock(return_value=SimpleNamespace(data=[SimpleNamespace(b64_json=payload)]))
    reference = ReferenceImage(data=base64.b64encode(b"ref").decode(), mime_type="image/jpeg")

    artifact = await _provider(client).generate_image("dress", [reference], aspect_ratio="9:16", use_pro_model=True)

    assert artifact.data == b"image-bytes"
    kwargs = client.images.edit.await_args.kwargs
    assert kwargs["model"] == "image-pro-model"
    assert kwargs["size"] == "1024x1536"
    assert kwargs["image"][0] == ("reference_1.jpeg", b"ref", "image/jpeg")


@pytest.mark.asyncio
async def test_empty_image_response_is_a_provider_error():
    client = MagicMock()
    client.images.generate = AsyncMock(return_value=SimpleNamespace(data=[]))

    with pytest.raises(ProviderError):
        await _provider(client).generate_image("dress")


@pytest.mark.asyncio
async def test_poll_video_maps_provider_statuses():
    client = MagicMock()
    client.videos.retrieve = AsyncMock(
        side_effect=[
            SimpleNamespace(status="in_progress", progress=30, error=None),
            SimpleNamespace(status="failed", progress=100, error=SimpleNamespace(message="moderation blocked")),
            SimpleNamespace(status="completed", progress=100, error=None),
        ]
    )
    provider = _provider(client)

    running = await provider.poll_video("vid_1")
    failed = await provider.poll_video("vid_1")
    done = await provider.poll_video("vid_1")

    assert (running.done, running.progress) == (False, 30)
    assert (failed.done, failed.failed, failed.error) == (True, True, "moderation blocked")
    assert (done.done, done.failed) == (True, False)
