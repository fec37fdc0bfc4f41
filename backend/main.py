import asyncio
import logging
import logging.config
import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware

# ------------------------------------------------------------
# 1. CONFIG & LOGGING
# ------------------------------------------------------------
from app.core.config import settings, validate_mpesa_settings

LOG_LEVEL = "INFO" if settings.ENVIRONMENT == "production" else "DEBUG"

logging_config = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.error": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.access": {"handlers": ["console"], "level": LOG_LEVEL},
        "tikiti": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

logging.config.dictConfig(logging_config)
logger = logging.getLogger("tikiti")


class CustomProxyHeadersMiddleware(BaseHTTPMiddleware):
    """Trust X-Forwarded-For / X-Forwarded-Proto from the load balancer."""
    async def dispatch(self, request, call_next):
        x_forwarded_for = request.headers.get("x-forwarded-for")
        if x_forwarded_for:
            request.scope["client"] = (x_forwarded_for.split(",")[0].strip(), 0)

        x_forwarded_proto = request.headers.get("x-forwarded-proto")
        if x_forwarded_proto:
            request.scope["scheme"] = x_forwarded_proto

        return await call_next(request)


# ------------------------------------------------------------
# 2. FASTAPI APP
# ------------------------------------------------------------
app = FastAPI(
    title="Tikiti API",
    description="Tikiti: time-boxed passes paid with M-Pesa.",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# ------------------------------------------------------------
# 3. MIDDLEWARE
# ------------------------------------------------------------
app.add_middleware(CustomProxyHeadersMiddleware)

if settings.ENVIRONMENT == "production":
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    client = request.client.host if request.client else "-"
    started = time.perf_counter()
    logger.info(f"➡️ {client} {request.method} {request.url.path}")
    try:
        response = await call_next(request)
    except Exception as e:
        logger.exception(f"💥 Exception during {request.method} {request.url.path}: {e}")
        raise
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"⬅️ {request.method} {request.url.path} → {response.status_code} ({elapsed_ms:.0f}ms)")
    return response


# ------------------------------------------------------------
# 4. ROUTERS (API ROUTES)
# ------------------------------------------------------------
from app.routers import subscription_router, webhooks

# Webhook first: its fixed path must win over /subscriptions/{id}/...
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(subscription_router.router, prefix="/api", tags=["Subscription"])


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": settings.PROJECT_NAME,
        "environment": settings.ENVIRONMENT,
        "mpesa_configured": not validate_mpesa_settings(),
    }


# ------------------------------------------------------------
# 5. STARTUP
# ------------------------------------------------------------
@app.on_event("startup")
async def startup_event():
    logger.info(f"🚀 Tikiti API started | Env: {settings.ENVIRONMENT} | Debug: {settings.DEBUG}")
    logger.info(f"🔗 M-Pesa callback: {settings.MPESA_CALLBACK_URL}")

    missing = validate_mpesa_settings()
    if missing:
        logger.error(f"❌ Missing required M-Pesa settings: {', '.join(missing)}")
    else:
        logger.info("✅ M-Pesa environment validation passed")

    if not settings.MPESA_BASE_URL.startswith("https://"):
        logger.warning(f"⚠️ MPESA_BASE_URL may be incorrectly configured: {settings.MPESA_BASE_URL}")


@app.on_event("startup")
async def start_background_tasks():
    if settings.RUN_EXPIRY_LOOP:
        from app.tasks.expiry_sweeper import expiry_sweep_loop
        asyncio.create_task(expiry_sweep_loop())
        logger.info("✅ Expiry sweep loop started")
