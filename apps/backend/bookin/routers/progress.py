# bookin/routers/progress.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..catalog import Catalog
from ..deps import current_user_id, get_catalog, get_entitlement_cache, get_store
from ..docstore import DocumentStore
from ..entitlements import EntitlementCache
from ..errors import NotFoundError, PaymentRequiredError
from ..progress import (
    UserProgress,
    books_with_progress,
    complete_session,
    get_all_progress,
    get_progress,
    progress_stats,
    record_answer,
)
from ..streak import load_streak, record_practice, save_streak, utc_today

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/progress", tags=["progress"])


class AnswerIn(BaseModel):
    questionId: str
    answer: str


def _out(progress: UserProgress, total: int) -> dict:
    return {**progress.to_doc(), "stats": progress_stats(progress, total)}


def _require_access(catalog: Catalog, cache: EntitlementCache, user_id: str, book_id: str):
    book = catalog.get_book(book_id)
    if not cache.has_access(user_id, book):
        raise PaymentRequiredError(f"Book {book.id} is locked")
    return book


@router.get("")
def list_progress(
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(get_store),
    catalog: Catalog = Depends(get_catalog),
):
    out = []
    for p in get_all_progress(store, user_id):
        # 書目已下架嘅進度照樣回傳，total 當 0
        total = catalog.total_questions(p.book_id) if p.book_id in catalog.books else 0
        out.append(_out(p, total))
    return out


@router.get("/books")
def list_started_books(
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(get_store),
):
    """至少答過一題嘅書"""
    return {"bookIds": books_with_progress(store, user_id)}


@router.get("/{book_id}")
def read_progress(
    book_id: str,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(get_store),
    catalog: Catalog = Depends(get_catalog),
):
    book = catalog.get_book(book_id)
    progress = get_progress(store, user_id, book.id)
    if progress is None:
        raise NotFoundError(f"No progress for book {book.id}")
    return _out(progress, catalog.total_questions(book.id))


@router.post("/{book_id}/answers")
def submit_answer(
    book_id: str,
    body: AnswerIn,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(get_store),
    catalog: Catalog = Depends(get_catalog),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    book = _require_access(catalog, cache, user_id, book_id)
    question = catalog.get_question(book.id, body.questionId)
    correct = question.is_correct(body.answer)
    total = catalog.total_questions(book.id)

    progress = record_answer(store, user_id, book.id, question.id, correct, total)
    zh_explain = question.explain_zh or question.explain
    return {
        "correct": correct,
        "answer": question.answer,
        "explain": question.explain,
        "explainZh": zh_explain,
        "progress": _out(progress, total),
    }


@router.post("/{book_id}/complete")
def finish_session(
    book_id: str,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(get_store),
    catalog: Catalog = Depends(get_catalog),
    cache: EntitlementCache = Depends(get_entitlement_cache),
):
    book = _require_access(catalog, cache, user_id, book_id)
    total = catalog.total_questions(book.id)
    progress = complete_session(store, user_id, book.id, total)

    # 完成一節即係今日有練習
    streak = record_practice(load_streak(store, user_id), utc_today())
    save_streak(store, user_id, streak)
    logger.info("Session complete %s/%s, streak %d", user_id, book.id, streak.current_streak)

    return {"progress": _out(progress, total), "streak": streak.to_doc()}
