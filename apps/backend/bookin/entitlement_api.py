# bookin/entitlement_api.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from . import config
from .catalog import Catalog
from .deps import current_user_id, get_catalog, get_entitlement_cache, get_store, optional_user_id
from .docstore import DocumentStore, doc_path, utcnow
from .entitlements import EntitlementCache, Purchase
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["entitlements"])


@router.get("/entitlements")
def read_entitlements(
    refresh: bool = Query(False),
    user_id: str = Depends(current_user_id),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    snap = cache.get(user_id, force=refresh)
    now = utcnow()
    return {
        "userId": user_id,
        "purchases": [p.to_doc() for p in snap.purchases if p.is_completed],
        "subscriptions": [s.to_doc() for s in snap.subscriptions if s.is_active(now)],
        "collections": sorted(snap.owned_collections()),
        "stale": snap.stale,
        "error": snap.error,
        "fetchedAt": snap.fetched_at,
    }


@router.get("/books/{book_id}/access")
def read_book_access(
    book_id: str,
    user_id: str | None = Depends(optional_user_id),
    catalog: Catalog = Depends(get_catalog),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    book = catalog.get_book(book_id)
    reason = cache.access_reason(user_id, book)
    return {"bookId": book.id, "hasAccess": reason is not None, "reason": reason}


@router.get("/collections/{collection_id}/access")
def read_collection_access(
    collection_id: str,
    user_id: str | None = Depends(optional_user_id),
    catalog: Catalog = Depends(get_catalog),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    collection = catalog.get_collection(collection_id)
    owned = cache.has_collection_access(user_id, collection.id)
    return {
        "collectionId": collection.id,
        "hasAccess": owned,
        # 讀取失敗時用緊舊資料
        "stale": bool(user_id) and cache.is_stale(user_id),
    }


class MockPurchaseIn(BaseModel):
    bookId: str


@router.post("/purchases/mock")
def mock_purchase(
    body: MockPurchaseIn,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(get_store),
    catalog: Catalog = Depends(get_catalog),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    """本地開發用：唔經 Stripe，直接寫一筆已完成嘅購買紀錄。"""
    if config.payment_mode() != "mock":
        # 正式環境當唔存在
        raise NotFoundError("Not found")

    book = catalog.get_book(body.bookId)
    if book.is_free:
        raise ValidationError(f"Book {book.id} is free and cannot be purchased")

    purchase = Purchase(
        id=book.id,
        user_id=user_id,
        book_id=book.id,
        purchased_at=utcnow(),
        price=book.price or 0.0,
        payment_method="mock",
        transaction_id=f"mock_{user_id}_{book.id}",
        status="completed",
    )
    created = store.replace_unless(
        doc_path("users", user_id, "purchases", book.id), purchase.to_doc(exclude={"id"}), "status", "completed"
    )
    if created:
        logger.info("Mock purchase %s/%s", user_id, book.id)
    cache.add_purchase(purchase)
    return {"ok": True, "created": created, "purchase": purchase.to_doc()}
