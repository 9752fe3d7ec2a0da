# apps/backend/bookin/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from . import config
from .auth.auth_routes import router as auth_router
from .billing_stripe import router as billing_router
from .database import init_db
from .docstore import utcnow
from .entitlement_api import router as entitlement_router
from .errors import register_error_handlers
from .logging_config import configure_logging
from .routers.books import router as books_router
from .routers.progress import router as progress_router
from .routers.reflections import router as reflections_router
from .routers.streak import router as streak_router

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("BookIn API %s started (payment mode: %s)", config.app_version(), config.payment_mode())
    yield


app = FastAPI(
    title="BookIn API",
    version=config.app_version(),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Stripe Dashboard 設定咗 /webhook/stripe，所以 billing 兩個 prefix 都掛
app.include_router(billing_router)
app.include_router(billing_router, prefix="/api")

# 👇 其餘統一用 /api prefix
app.include_router(auth_router, prefix="/api")
app.include_router(entitlement_router, prefix="/api")
app.include_router(books_router, prefix="/api")
app.include_router(progress_router, prefix="/api")
app.include_router(streak_router, prefix="/api")
app.include_router(reflections_router, prefix="/api")


# =========================================================
# Health / Version
# =========================================================
@app.get("/", response_class=PlainTextResponse)
def root():
    return "bookin-backend OK"


@app.get("/health")
def health():
    configured = bool(config.stripe_secret_key() and config.stripe_webhook_secret())
    return {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "environment": "configured" if configured else "missing-config",
    }


@app.get("/version")
def version():
    return {"version": config.app_version()}
