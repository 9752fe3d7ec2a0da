# bookin/routers/books.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..catalog import Catalog, Lang
from ..deps import get_catalog, get_entitlement_cache, optional_user_id
from ..docstore import utcnow
from ..entitlements import EntitlementCache
from ..errors import AuthenticationError, PaymentRequiredError

router = APIRouter(tags=["books"])


def _book_out(book, lang: Lang = "en") -> dict:
    data = book.to_doc()
    data["displayTitle"] = book.title_zh if lang == "zh-HK" and book.title_zh else book.title
    data["priceLabel"] = book.price_label()
    # price id 只喺伺服器用
    data.pop("lifetimePriceId", None)
    data.pop("subscriptionPriceId", None)
    return data


@router.get("/books")
def list_books(lang: Lang = Query("en"), catalog: Catalog = Depends(get_catalog)):
    return [_book_out(b, lang) for b in catalog.list_books()]


@router.get("/books/{book_id}")
def get_book(book_id: str, lang: Lang = Query("en"), catalog: Catalog = Depends(get_catalog)):
    return _book_out(catalog.get_book(book_id), lang)


@router.get("/collections")
def list_collections(catalog: Catalog = Depends(get_catalog)):
    now = utcnow()
    out = []
    for c in catalog.collections.values():
        data = c.to_doc(exclude={"provider_product_id"})
        data["isAvailable"] = c.is_available(now)
        out.append(data)
    return out


@router.get("/books/{book_id}/questions")
def list_questions(
    book_id: str,
    lang: Lang = Query("en"),
    user_id: Optional[str] = Depends(optional_user_id),
    catalog: Catalog = Depends(get_catalog),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    book = catalog.get_book(book_id)
    if not book.is_free:
        if not user_id:
            raise AuthenticationError("Sign in to read this book")
        if not cache.has_access(user_id, book):
            raise PaymentRequiredError(f"Book {book.id} is locked")
    return {
        "bookId": book.id,
        "lang": lang,
        "questions": [q.localized(lang) for q in catalog.questions(book.id)],
    }
