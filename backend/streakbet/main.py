"""
STREAKBET — FastAPI Application Entry Point
"""
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from streakbet.api.dependencies import close_payment_gateway
from streakbet.core.config import settings
from streakbet.core.database import close_db, get_redis
from streakbet.core.errors import EngineError, ValidationError, describe_validation_errors
from streakbet.schemas.common import ErrorResponse
from streakbet.tasks.scheduler import setup_scheduler

# ─── Логирование ──────────────────────────────────────────────────────────────
logger.remove()
logger.add(
    sys.stderr,
    level="DEBUG" if settings.app_debug else "INFO",
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
)
logger.add(
    "logs/app.log",
    rotation="100 MB",
    retention="30 days",
    level="INFO",
    compression="gz",
)


# ─── Lifespan ─────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Запуск и остановка сервисов."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version} in {settings.app_env} mode")

    # Проверка Redis
    try:
        redis = await get_redis()
        await redis.ping()
        logger.info("Redis connected")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")

    # Запуск APScheduler
    scheduler = setup_scheduler()
    scheduler.start()
    logger.info("APScheduler started")

    yield

    # Graceful shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    scheduler.shutdown(wait=True)
    await close_payment_gateway()
    await close_db()
    logger.info("Shutdown complete")


# ─── FastAPI App ───────────────────────────────────────────────────────────────

app = FastAPI(
    title="STREAKBET API",
    description="Испытания на серии выигрышных ставок с наградами по уровням",
    version=settings.app_version,
    docs_url="/docs" if settings.app_debug else None,
    redoc_url="/redoc" if settings.app_debug else None,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Exception Handlers ────────────────────────────────────────────────────────

@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Бизнес-ошибки: стабильный kind + сообщение для пользователя."""
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} → {exc.kind}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.kind, detail=exc.message).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Ошибки разбора тела и параметров запроса в том же конверте, что и бизнес-ошибки."""
    return JSONResponse(
        status_code=ValidationError.status_code,
        content=ErrorResponse(
            error=ValidationError.kind, detail=describe_validation_errors(exc.errors())
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


# ─── Роутеры ──────────────────────────────────────────────────────────────────

from streakbet.api.routes import admin, bets, challenges, payouts, rewards, webhooks

API_PREFIX = "/api/v1"

app.include_router(challenges.router, prefix=API_PREFIX)
app.include_router(bets.router, prefix=API_PREFIX)
app.include_router(rewards.router, prefix=API_PREFIX)
app.include_router(payouts.router, prefix=API_PREFIX)
app.include_router(admin.router, prefix=API_PREFIX)
app.include_router(webhooks.router, prefix=API_PREFIX)


# ─── Health check ─────────────────────────────────────────────────────────────

@app.get("/health")
async def health_check() -> dict:
    redis = await get_redis()
    await redis.ping()
    return {
        "status": "ok",
        "service": "streakbet",
        "version": settings.app_version,
        "env": settings.app_env,
    }
