# bookin/checkout.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from .catalog import Catalog
from .docstore import utcnow
from .errors import ValidationError

IntentKind = Literal["lifetime", "subscription", "collection"]

SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


@dataclass(frozen=True)
class CheckoutIntent:
    kind: IntentKind
    user_id: str
    price_id: str
    book_id: Optional[str] = None
    collection_id: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None

    @property
    def mode(self) -> str:
        return "subscription" if self.kind == "subscription" else "payment"


def parse_intent(
    *,
    user_id: Optional[str],
    price_id: Optional[str],
    book_id: Optional[str] = None,
    payment_type: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> CheckoutIntent:
    """
    兩種請求格式：
      - 收藏集：metadata = {"type": "collection", "collectionId": ...}
      - 單本書：bookId + paymentType（lifetime | subscription）
    """
    md = metadata or {}
    if md.get("type") == "collection":
        missing = [n for n, v in (("priceId", price_id), ("userId", user_id), ("metadata.collectionId", md.get("collectionId"))) if not v]
        if missing:
            raise ValidationError(f"Missing required fields for collection purchase: {', '.join(missing)}")
        return CheckoutIntent(
            kind="collection",
            user_id=str(user_id),
            price_id=str(price_id),
            collection_id=str(md["collectionId"]),
            success_url=success_url,
            cancel_url=cancel_url,
        )

    missing = [n for n, v in (("bookId", book_id), ("priceId", price_id), ("userId", user_id), ("paymentType", payment_type)) if not v]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if payment_type not in ("lifetime", "subscription"):
        raise ValidationError(f"Unsupported paymentType: {payment_type}")
    return CheckoutIntent(
        kind=payment_type,  # type: ignore[arg-type]
        user_id=str(user_id),
        price_id=str(price_id),
        book_id=str(book_id),
        success_url=success_url,
        cancel_url=cancel_url,
    )


def configured_price(catalog: Catalog, intent: CheckoutIntent, now: Optional[datetime] = None) -> str:
    """搵返呢個購買意圖喺伺服器設定嘅 price id；冇設定或者唔接受就 ValidationError。"""
    if intent.kind == "collection":
        collection = catalog.collections.get(intent.collection_id or "")
        if collection is None:
            raise ValidationError(f"Unknown collection: {intent.collection_id}")
        if not collection.is_available(now or utcnow()):
            raise ValidationError(f"Collection {collection.id} is no longer available")
        price = collection.provider_product_id
    else:
        book = catalog.books.get(intent.book_id or "")
        if book is None:
            raise ValidationError(f"Unknown book: {intent.book_id}")
        if book.is_free:
            raise ValidationError(f"Book {book.id} is free and cannot be purchased")
        price = book.lifetime_price_id if intent.kind == "lifetime" else book.subscription_price_id

    if not price:
        raise ValidationError(f"No price configured for this {intent.kind} purchase")
    return price


def _success_url(url: Optional[str], origin: str) -> str:
    url = url or f"{origin}/purchase-success"
    if SESSION_ID_PLACEHOLDER in url:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}session_id={SESSION_ID_PLACEHOLDER}"


def build_session_params(
    intent: CheckoutIntent,
    catalog: Catalog,
    origin: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    stripe.checkout.Session.create(**params) 用嘅參數。
    metadata 要夠 webhook 自己判斷係邊個用戶、邊本書 / 邊個收藏集。
    """
    price = configured_price(catalog, intent, now)
    if intent.price_id != price:
        raise ValidationError("priceId does not match the configured price for this purchase")

    if intent.kind == "collection":
        metadata = {"userId": intent.user_id, "type": "collection", "collectionId": intent.collection_id}
        cancel_default = f"{origin}/collections/{intent.collection_id}"
    else:
        metadata = {"userId": intent.user_id, "bookId": intent.book_id, "paymentType": intent.kind}
        cancel_default = f"{origin}/books/{intent.book_id}"

    params: Dict[str, Any] = {
        "mode": intent.mode,
        "payment_method_types": ["card"],
        "line_items": [{"price": price, "quantity": 1}],
        "success_url": _success_url(intent.success_url, origin),
        "cancel_url": intent.cancel_url or cancel_default,
        "client_reference_id": intent.user_id,
        "metadata": metadata,
    }
    if intent.kind == "subscription":
        # subscription.* 事件會帶返呢份 metadata
        params["subscription_data"] = {"metadata": {"userId": intent.user_id, "bookId": intent.book_id}}
    return params
