# bookin/webhooks.py
"""
Stripe webhook reconciliation.

Three stages, each testable on its own:

  verify_event(payload, signature, secret) -> event dict
      signature check on the raw body, before anything is parsed
  plan_writes(event) -> [WriteOp]
      pure: one handler per event type, looked up in EVENT_HANDLERS
  apply_writes(store, ops) -> user ids touched
      every op is a single keyed document write, safe to repeat

Idempotency comes from the keys: purchases by (user, book), collection
purchases by (user, collection), subscriptions by Stripe subscription id.
A purchase record is replaced until it reaches status=completed and left
alone afterwards.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Set, Tuple

import stripe

from .docstore import SERVER_TIMESTAMP, DocumentStore, doc_path
from .errors import AuthenticationError, NotConfiguredError

logger = logging.getLogger(__name__)

WriteKind = Literal["complete", "upsert", "merge_existing"]


@dataclass(frozen=True)
class WriteOp:
    """
    complete        整份覆寫，除非已經係 status=completed（購買紀錄，完成後不可改）
    upsert          set(merge=True)
    merge_existing  只更新已存在嘅 document；唔存在就乜都唔做
    """
    kind: WriteKind
    path: str
    data: Dict[str, Any]
    user_id: str


@dataclass
class ReconcileResult:
    event_type: str
    handled: bool
    applied: int = 0
    skipped: int = 0
    users: Set[str] = field(default_factory=set)


# === 1) 驗證簽名 ================================================================
def verify_event(payload: bytes, sig_header: Optional[str], secret: Optional[str]) -> Dict[str, Any]:
    if not secret:
        raise NotConfiguredError("Webhook secret not configured (STRIPE_WEBHOOK_SECRET)")
    if not sig_header:
        raise AuthenticationError("Missing stripe-signature header", status_code=400)
    try:
        stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise AuthenticationError(f"Webhook signature verification failed: {e}", status_code=400) from e
    # 驗證通過之後先當 JSON 解析；用 plain dict，唔依賴 StripeObject
    return json.loads(payload)


# === 2) 小工具 ==================================================================
def _ts(value: Any) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _object_id(value: Any) -> str:
    # customer / payment_intent 可能係 id 字串，亦可能 expand 咗成個 object
    if isinstance(value, dict):
        return str(value.get("id") or "")
    return str(value or "")


def _clean_id(value: Any) -> str:
    # metadata 嚟自外部；含 "/" 嘅 id 會變成另一條 path，當冇
    s = str(value or "").strip()
    return "" if "/" in s else s


def _amount(obj: Dict[str, Any]) -> float:
    cents = obj.get("amount_total") or 0
    return round(int(cents) / 100, 2)


def subscription_periods(sub: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """新版 API 將 current_period_* 搬咗去 subscription item，兩邊都睇。"""
    start = _ts(sub.get("current_period_start"))
    end = _ts(sub.get("current_period_end"))
    if start and end:
        return start, end
    items = ((sub.get("items") or {}).get("data") or [])
    if items:
        start = start or _ts(items[0].get("current_period_start"))
        end = end or _ts(items[0].get("current_period_end"))
    return start, end


# === 3) 各事件 handler（純函數：event object → [WriteOp]）======================
def on_checkout_completed(session: Dict[str, Any]) -> List[WriteOp]:
    md = session.get("metadata") or {}
    user_id = _clean_id(md.get("userId"))
    if not user_id:
        logger.warning("checkout.session.completed %s without valid userId, skipped", session.get("id"))
        return []

    common = {
        "userId": user_id,
        "purchasedAt": SERVER_TIMESTAMP,
        "price": _amount(session),
        "paymentMethod": "stripe",
        "transactionId": _object_id(session.get("payment_intent")) or str(session.get("id") or ""),
        "status": "completed",
    }

    # 收藏集
    if md.get("type") == "collection":
        collection_id = _clean_id(md.get("collectionId"))
        if not collection_id:
            logger.warning("Collection checkout %s without valid collectionId, skipped", session.get("id"))
            return []
        path = doc_path("users", user_id, "collectionPurchases", collection_id)
        return [WriteOp("complete", path, {"collectionId": collection_id, **common}, user_id)]

    # 單本書
    book_id = _clean_id(md.get("bookId"))
    if not book_id:
        logger.warning("Book checkout %s without valid bookId, skipped", session.get("id"))
        return []

    payment_type = md.get("paymentType")
    if payment_type == "lifetime":
        path = doc_path("users", user_id, "purchases", book_id)
        return [WriteOp("complete", path, {"bookId": book_id, **common}, user_id)]
    if payment_type == "subscription":
        # 呢個時候 billing period 未定，等 customer.subscription.created
        logger.info("Subscription checkout for %s/%s, waiting for subscription.created", user_id, book_id)
        return []

    logger.warning("Unknown paymentType %r in checkout %s, skipped", payment_type, session.get("id"))
    return []


def on_subscription_created(sub: Dict[str, Any]) -> List[WriteOp]:
    md = sub.get("metadata") or {}
    user_id, book_id = _clean_id(md.get("userId")), _clean_id(md.get("bookId"))
    sub_id = _clean_id(sub.get("id"))
    if not user_id or not book_id or not sub_id:
        logger.warning("Subscription %s missing or invalid userId/bookId metadata, skipped", sub.get("id"))
        return []

    start, end = subscription_periods(sub)
    if not start or not end:
        # 唔寫半份紀錄；照樣 ack，等之後 subscription.updated 帶齊資料
        logger.warning("Subscription %s missing current period start/end, skipped", sub.get("id"))
        return []

    return [
        WriteOp(
            "upsert",
            doc_path("users", user_id, "subscriptions", sub_id),
            {
                "id": sub_id,
                "userId": user_id,
                "bookId": book_id,
                "status": sub.get("status") or "incomplete",
                "currentPeriodStart": start,
                "currentPeriodEnd": end,
                "cancelAtPeriodEnd": bool(sub.get("cancel_at_period_end")),
                "providerSubscriptionId": sub_id,
                "providerCustomerId": _object_id(sub.get("customer")),
                "createdAt": SERVER_TIMESTAMP,
            },
            user_id,
        )
    ]


def _on_subscription_changed(sub: Dict[str, Any], default_status: str) -> List[WriteOp]:
    md = sub.get("metadata") or {}
    user_id, sub_id = _clean_id(md.get("userId")), _clean_id(sub.get("id"))
    if not user_id or not sub_id:
        logger.warning("Subscription %s missing or invalid userId metadata, skipped", sub.get("id"))
        return []

    data: Dict[str, Any] = {
        "status": sub.get("status") or default_status,
        "cancelAtPeriodEnd": bool(sub.get("cancel_at_period_end")),
        "updatedAt": SERVER_TIMESTAMP,
    }
    start, end = subscription_periods(sub)
    if start:
        data["currentPeriodStart"] = start
    if end:
        data["currentPeriodEnd"] = end

    return [WriteOp("merge_existing", doc_path("users", user_id, "subscriptions", sub_id), data, user_id)]


def on_subscription_updated(sub: Dict[str, Any]) -> List[WriteOp]:
    return _on_subscription_changed(sub, default_status="active")


def on_subscription_deleted(sub: Dict[str, Any]) -> List[WriteOp]:
    # 唔刪紀錄，只係轉 status
    return _on_subscription_changed(sub, default_status="canceled")


def on_invoice_paid(invoice: Dict[str, Any]) -> List[WriteOp]:
    # period 以 subscription.created / updated 為準，避免同未定嘅資料競爭
    if invoice.get("subscription"):
        logger.info("Invoice %s paid for subscription %s, no write", invoice.get("id"), invoice.get("subscription"))
    return []


def on_invoice_failed(invoice: Dict[str, Any]) -> List[WriteOp]:
    logger.warning(
        "Invoice payment failed: invoice=%s customer=%s",
        invoice.get("id"),
        _object_id(invoice.get("customer")),
    )
    return []


EVENT_HANDLERS: Dict[str, Callable[[Dict[str, Any]], List[WriteOp]]] = {
    "checkout.session.completed": on_checkout_completed,
    "customer.subscription.created": on_subscription_created,
    "customer.subscription.updated": on_subscription_updated,
    "customer.subscription.deleted": on_subscription_deleted,
    "invoice.payment_succeeded": on_invoice_paid,
    "invoice.payment_failed": on_invoice_failed,
}


def plan_writes(event: Dict[str, Any]) -> Tuple[bool, List[WriteOp]]:
    """(handled, ops)。未處理嘅事件類型 → (False, [])"""
    etype = event.get("type") or ""
    handler = EVENT_HANDLERS.get(etype)
    if handler is None:
        logger.info("Unhandled event type: %s", etype)
        return False, []
    obj = ((event.get("data") or {}).get("object")) or {}
    return True, handler(obj)


# === 4) 寫入 ====================================================================
def apply_writes(store: DocumentStore, ops: List[WriteOp]) -> Tuple[int, int, Set[str]]:
    """(applied, skipped, users)。寫入失敗直接 raise，由 route 回 500 讓 Stripe 重送。"""
    applied = skipped = 0
    users: Set[str] = set()
    for op in ops:
        if op.kind == "complete":
            done = store.replace_unless(op.path, op.data, field="status", frozen_value="completed")
        elif op.kind == "upsert":
            store.set(op.path, op.data, merge=True)
            done = True
        else:
            done = store.update(op.path, op.data)

        if done:
            applied += 1
            users.add(op.user_id)
            logger.info("Webhook write %s %s", op.kind, op.path)
        else:
            skipped += 1
            logger.info("Webhook write %s %s was a no-op", op.kind, op.path)
    return applied, skipped, users


def reconcile(store: DocumentStore, event: Dict[str, Any]) -> ReconcileResult:
    etype = event.get("type") or ""
    logger.info("Received Stripe webhook %s (%s)", etype, event.get("id"))
    handled, ops = plan_writes(event)
    applied, skipped, users = apply_writes(store, ops)
    return ReconcileResult(event_type=etype, handled=handled, applied=applied, skipped=skipped, users=users)
