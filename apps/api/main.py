"""
Lumiere Generation API - FastAPI Backend
Main application entry point with metered generation, billing webhooks and health checks.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from config import settings, validate_security_settings
from database import async_session_maker, engine, Base
import models  # noqa: F401
from routers import (
    health,
    billing,
    generation,
    webhooks,
)
from services.errors import ServiceError, ValidationError
from services.payments import StripeGateway
from services.plans import seed_default_plans
from services.provider import build_generation_provider
from services.storage import LocalArtifactStorage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Lumiere Generation API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if settings.SEED_DEFAULT_PLANS:
        try:
            async with async_session_maker() as session:
                created = await seed_default_plans(session)
            if created:
                print(f"🌱 Seeded {created} default plans.")
        except Exception as exc:
            print(f"⚠️ Plan seeding skipped: {exc}")

    app.state.generation_provider = build_generation_provider(settings)
    app.state.payment_gateway = StripeGateway(
        settings.STRIPE_SECRET_KEY,
        settings.STRIPE_WEBHOOK_SECRET,
        tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    )
    app.state.artifact_storage = LocalArtifactStorage(settings.ARTIFACT_DIR, settings.ARTIFACT_BASE_URL)
    if not app.state.payment_gateway.configured:
        print("⚠️ Stripe is not configured; checkout will be unavailable.")
    yield
    # Shutdown
    print("👋 Shutting down API...")


app = FastAPI(
    title="Lumiere Generation API",
    description="Credit-metered text, image and video generation with subscription billing",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid value')}" if location else "Malformed request."
    error = ValidationError(message)
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = ServiceError()
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(generation.router, prefix="/generate", tags=["Generation"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])

app.mount(
    settings.ARTIFACT_BASE_URL,
    StaticFiles(directory=settings.ARTIFACT_DIR, check_dir=False),
    name="artifacts",
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Lumiere Generation API",
        "version": "0.1.0",
        "status": "running"
    }
