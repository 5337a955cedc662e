"""
Commerce Hooks: FastAPI entry point.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from commerce_hooks.config import settings
from commerce_hooks.middleware.error_handler import global_exception_handler
from commerce_hooks.middleware.logging_middleware import logging_middleware
from commerce_hooks.middleware.rate_limit import limiter
from commerce_hooks.models.database import init_db

# ── Routes ───────────────────────────────────────────────
from commerce_hooks.routes.admin import router as admin_router
from commerce_hooks.routes.auth import router as auth_router
from commerce_hooks.routes.integrations import router as integrations_router
from commerce_hooks.routes.payment_webhooks import router as payment_webhooks_router
from commerce_hooks.routes.whatsapp_webhooks import router as whatsapp_webhooks_router


# ── Lifespan ─────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()
    logger.info("Database initialized")
    yield
    logger.info("Shutting down")


# ── App ──────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Payment and WhatsApp webhooks, Nuby property sync",
    lifespan=lifespan,
)

# ── Rate Limiter ─────────────────────────────────────────
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS ─────────────────────────────────────────────────
origins = settings.CORS_ORIGINS.split(",") if settings.CORS_ORIGINS != "*" else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Custom Middleware ────────────────────────────────────
app.middleware("http")(global_exception_handler)
app.middleware("http")(logging_middleware)

# ── Register Routers ────────────────────────────────────
app.include_router(payment_webhooks_router)
app.include_router(whatsapp_webhooks_router)
app.include_router(integrations_router)
app.include_router(auth_router)
app.include_router(admin_router)


# ── Health Check ─────────────────────────────────────────
@app.get("/api/health", tags=["health"])
async def health():
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


# ── Run ──────────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "commerce_hooks.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )
