# bookin/billing_stripe.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from . import config
from .catalog import Catalog
from .checkout import build_session_params, parse_intent
from .deps import current_user_id, get_catalog, get_entitlement_cache, get_store
from .docstore import DocumentStore
from .entitlements import EntitlementCache
from .errors import AuthenticationError, ExternalProviderError, NotConfiguredError
from .schemas import CamelModel
from .webhooks import reconcile, verify_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


# --- 請求模型 ----------------------------------------------------------------
class CheckoutBody(CamelModel):
    book_id: Optional[str] = None
    price_id: Optional[str] = None
    user_id: Optional[str] = None
    payment_type: Optional[str] = None     # "lifetime" | "subscription"
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None  # 收藏集：{"type": "collection", "collectionId": ...}


# --- 小工具 ------------------------------------------------------------------
def _ensure_stripe_ready() -> None:
    key = config.stripe_secret_key()
    if not key:
        raise NotConfiguredError("Payment system not configured (missing STRIPE_SECRET_KEY)")
    stripe.api_key = key


def _plain(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return dict(obj.to_dict())
    return dict(obj)


# --- 建立 Checkout Session ---------------------------------------------------
@router.post("/create-checkout-session")
def create_checkout_session(
    body: CheckoutBody,
    signed_in_user: str = Depends(current_user_id),
    catalog: Catalog = Depends(get_catalog),
):
    """
    建立 Stripe Checkout Session
    - 單本書：bookId + paymentType（lifetime 一次過 / subscription 季度訂閱）
    - 收藏集：metadata.type = "collection" + metadata.collectionId
    - 付款成功後由 Webhook 寫入權限（呢度唔會寫任何購買紀錄）
    """
    _ensure_stripe_ready()

    intent = parse_intent(
        user_id=body.user_id,
        price_id=body.price_id,
        book_id=body.book_id,
        payment_type=body.payment_type,
        metadata=body.metadata,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    if intent.user_id != signed_in_user:
        raise AuthenticationError("userId does not match the signed-in user", status_code=403)

    params = build_session_params(intent, catalog, origin=config.app_origin())
    logger.info(
        "Creating %s checkout session",
        intent.kind,
        extra={"userId": intent.user_id, "bookId": intent.book_id, "collectionId": intent.collection_id},
    )
    try:
        sess = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.exception("Stripe checkout session creation failed")
        raise ExternalProviderError(getattr(e, "user_message", None) or str(e)) from e

    logger.info("Checkout session created: %s", sess.id)
    return {"id": sess.id, "url": sess.url}


# --- 付款後確認（只作顯示用，唔會授予權限）-----------------------------------
@router.get("/verify-session/{session_id}")
def verify_session(session_id: str):
    _ensure_stripe_ready()
    try:
        sess = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.exception("Stripe session lookup failed for %s", session_id)
        raise ExternalProviderError(getattr(e, "user_message", None) or str(e)) from e

    email = getattr(sess, "customer_email", None)
    details = getattr(sess, "customer_details", None)
    if not email and details is not None:
        email = _plain(details).get("email")
    return {
        "status": getattr(sess, "payment_status", None),
        "customerEmail": email,
        "metadata": _plain(getattr(sess, "metadata", None)),
    }


# --- Webhook：依付款事件寫入權限 ---------------------------------------------
@router.post("/webhook/stripe")
async def stripe_webhook(
    request: Request,
    store: DocumentStore = Depends(get_store),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    """
    Stripe Dashboard → Developers → Webhooks
    勾選事件：
      - checkout.session.completed
      - customer.subscription.created / updated / deleted
      - invoice.payment_succeeded / invoice.payment_failed
    """
    # 一定要用 raw body 驗簽，唔可以先 parse JSON
    payload = await request.body()
    sig = request.headers.get("stripe-signature")
    try:
        event = verify_event(payload, sig, config.stripe_webhook_secret())
    except NotConfiguredError as e:
        logger.error("%s", e.message)
        return JSONResponse({"error": e.message}, status_code=500)
    except AuthenticationError as e:
        # 4xx：Stripe 唔會無限重送偽造 / 損壞嘅請求
        logger.warning("%s", e.message)
        return JSONResponse({"error": e.message}, status_code=400)

    try:
        result = await run_in_threadpool(reconcile, store, event)
    except Exception:
        # 5xx：讓 Stripe 重送
        logger.exception("Error processing webhook %s", event.get("type"))
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

    for user_id in result.users:
        cache.invalidate(user_id)
    return {"received": True}
