"""
Mystic Mini App API - FastAPI Backend
Telegram mini app backend: session checks, credit ledger and Freepik Mystic generation.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from database import Base, async_session_maker, engine
import models  # noqa: F401
from routers import health, miniapp, telegram
from services.errors import AppError
from services.prompts import seed_prompt_suggestions

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Mystic Mini App API...")
    if not settings.BOT_TOKEN:
        print("⚠️ BOT_TOKEN is not configured; every /api request will fail.")
    if not settings.FREEPIK_API_KEY:
        print("⚠️ FREEPIK_API_KEY is not configured; /api/generate will fail.")
    if not settings.TELEGRAM_WEBHOOK_SECRET:
        print("⚠️ TELEGRAM_WEBHOOK_SECRET is not configured; /telegram/webhook will refuse payments.")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
            async with async_session_maker() as db:
                seeded = await seed_prompt_suggestions(db)
            if seeded:
                print(f"🌱 Seeded {seeded} prompt suggestions.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Mystic Mini App API",
    description="Credit-metered Freepik Mystic image generation for a Telegram mini app",
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


@app.exception_handler(AppError)
async def _app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"error": "internal_error"})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(miniapp.router, prefix="/api", tags=["Mini App"])
app.include_router(telegram.router, prefix="/telegram", tags=["Telegram"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Mystic Mini App API",
        "version": "0.1.0",
        "status": "running"
    }
