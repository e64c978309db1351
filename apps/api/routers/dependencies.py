"""Process-wide collaborators resolved from application state."""

from fastapi import Request

from services.payments import StripeGateway
from services.provider import OpenAIGenerationProvider
from services.storage import LocalArtifactStorage


def get_generation_provider(request: Request) -> OpenAIGenerationProvider:
    return request.app.state.generation_provider


def get_payment_gateway(request: Request) -> StripeGateway:
    return request.app.state.payment_gateway


def get_artifact_storage(request: Request) -> LocalArtifactStorage:
    return request.app.state.artifact_storage
