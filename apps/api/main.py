"""
Artifact Hub Billing - FastAPI Backend
Main application entry point with health check and API routing.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_security_settings
from database import engine, Base
from errors import register_error_handlers
import models  # noqa: F401
from routers import artifacts, billing, health


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Artifact Hub Billing API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if not settings.BILLING_ENABLED:
        print("💤 Billing disabled; recharge checkout will return 503.")
    elif not settings.PAYMENT_PROVIDER_API_KEY:
        print("⚠️ PAYMENT_PROVIDER_API_KEY is not set; recharge checkout will return 503.")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Artifact Hub Billing API",
    description="Credit ledger, recharge checkout, and download entitlements for models and datasets",
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

register_error_handlers(app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(artifacts.router, tags=["Artifacts"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Artifact Hub Billing API",
        "version": "0.1.0",
        "status": "running"
    }
