# apps/backend/bookin/config.py
from __future__ import annotations

import os
from typing import List, Optional

# 所有設定都由環境變數讀取（Render / Cloud Run 上設定）。
# 用函數而唔係 module 常數，測試可以用 monkeypatch.setenv 即時改。

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3001",
    "http://localhost:5173",
    "https://bookingprod.web.app",
    "https://bookinprod.firebaseapp.com",
    "https://bookin.ink",
    "https://www.bookin.ink",
]


def get(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip()


def need(name: str) -> str:
    v = get(name)
    if not v:
        raise RuntimeError(f"Missing environment variable: {name}")
    return v


def get_bool(name: str, default: bool = False) -> bool:
    v = get(name)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


def get_int(name: str, default: int) -> int:
    v = get(name)
    try:
        return int(v) if v is not None else default
    except ValueError:
        return default


# --- Stripe ----------------------------------------------------------------
def stripe_secret_key() -> Optional[str]:
    return get("STRIPE_SECRET_KEY")            # sk_live_xxx / sk_test_xxx


def stripe_webhook_secret() -> Optional[str]:
    return get("STRIPE_WEBHOOK_SECRET")        # whsec_xxx


def collection_price_id() -> Optional[str]:
    return get("STRIPE_COLLECTION_PRICE_ID")   # price_xxx


def payment_mode() -> str:
    """'stripe'（正式）或 'mock'（本地開發，直接寫入假購買紀錄）。"""
    mode = (get("PAYMENT_MODE", "stripe") or "stripe").lower()
    return mode if mode in ("stripe", "mock") else "stripe"


# --- App -------------------------------------------------------------------
def app_version() -> str:
    return get("APP_VERSION", "0.1.0") or "0.1.0"


def app_origin() -> str:
    return (get("APP_ORIGIN", "http://localhost:3001") or "").rstrip("/")


def cors_origins() -> List[str]:
    raw = get("CORS_ORIGINS")
    if not raw:
        return list(DEFAULT_CORS_ORIGINS)
    return [o.strip() for o in raw.split(",") if o.strip()]


def entitlement_cache_ttl() -> int:
    return max(0, get_int("ENTITLEMENT_CACHE_TTL", 300))


# --- Auth ------------------------------------------------------------------
def jwt_secret() -> Optional[str]:
    return get("JWT_SECRET")


def jwt_alg() -> str:
    return get("JWT_ALG", "HS256") or "HS256"


def jwt_expires_minutes() -> int:
    return get_int("JWT_EXPIRES_MINUTES", 60 * 24 * 30)  # 30 日
