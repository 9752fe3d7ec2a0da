# bookin/catalog.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, List, Literal, Optional

from pydantic import Field

from . import config
from .errors import NotFoundError
from .schemas import CamelModel
from .utils.csv_loader import read_rows

logger = logging.getLogger(__name__)

FOUNDING_COLLECTION_ID = "2026-founding-collection"

Lang = Literal["en", "zh-HK"]


class Book(CamelModel):
    id: str
    title: str
    title_zh: str = ""
    author: str = ""
    category: List[str] = Field(default_factory=list)
    difficulty: str = "beginner"
    is_free: bool = False
    price: Optional[float] = None
    collection: List[str] = Field(default_factory=list)   # 所屬收藏集 id
    total_questions: int = 0
    lifetime_price_id: Optional[str] = None
    subscription_price_id: Optional[str] = None

    def price_label(self) -> str:
        if self.is_free:
            return "FREE"
        return f"${self.price:.2f}" if self.price else "N/A"


class Collection(CamelModel):
    id: str
    translation_key: str
    price: float
    book_ids: List[str] = Field(default_factory=list)     # 由 Book.collection 推算，唔係權威資料
    is_active: bool = True
    expires_at: Optional[datetime] = None
    provider_product_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def is_available(self, now: Optional[datetime] = None) -> bool:
        return self.is_active and not self.is_expired(now)


class Question(CamelModel):
    id: str
    book_id: str
    type: Literal["mc", "tf"] = "mc"
    question: str
    question_zh: str = ""
    choices: List[str] = Field(default_factory=list)
    answer: str
    explain: str = ""
    explain_zh: str = ""

    def is_correct(self, answer: str) -> bool:
        return _norm_answer(answer, self.type) == _norm_answer(self.answer, self.type)

    def localized(self, lang: Lang = "en") -> dict:
        """前端用（唔包答案）。zh-HK 冇譯文時退回英文。"""
        zh = lang == "zh-HK"
        return {
            "id": self.id,
            "bookId": self.book_id,
            "type": self.type,
            "question": (self.question_zh if zh and self.question_zh else self.question),
            "choices": list(self.choices),
        }


_TF_ALIASES = {"t": "T", "true": "T", "對": "T", "是": "T", "f": "F", "false": "F", "錯": "F", "非": "F"}


def _norm_answer(a: str, qtype: str) -> str:
    t = (a or "").strip()
    if qtype == "tf":
        return _TF_ALIASES.get(t.lower(), t.upper())
    # 'A'..'D' 或 '1'..'4'
    if t.isdigit() and 1 <= int(t) <= 4:
        return "ABCD"[int(t) - 1]
    return t.upper()


def founding_collection() -> Collection:
    return Collection(
        id=FOUNDING_COLLECTION_ID,
        translation_key="founding_2026",
        price=9.99,
        is_active=True,
        expires_at=datetime(2026, 1, 31, 23, 59, 59, tzinfo=timezone.utc),
        provider_product_id=config.collection_price_id(),
    )


# === CSV → model ==============================================================
def _split_list(raw: str) -> List[str]:
    return [x.strip() for x in (raw or "").replace(",", ";").split(";") if x.strip()]


def _to_bool(raw: str) -> bool:
    return (raw or "").strip().lower() in ("1", "true", "yes", "y")


def _to_float(raw: str) -> Optional[float]:
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


def _to_int(raw: str) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def book_from_row(r: Dict[str, str]) -> Book:
    return Book(
        id=r["id"],
        title=r.get("title") or r["id"],
        title_zh=r.get("title_zh", ""),
        author=r.get("author", ""),
        category=_split_list(r.get("category", "")),
        difficulty=r.get("difficulty") or "beginner",
        is_free=_to_bool(r.get("is_free", "")),
        price=_to_float(r.get("price", "")),
        collection=_split_list(r.get("collection", "")),
        total_questions=_to_int(r.get("total_questions", "")),
        lifetime_price_id=r.get("lifetime_price_id") or None,
        subscription_price_id=r.get("subscription_price_id") or None,
    )


def question_from_row(book_id: str, i: int, r: Dict[str, str]) -> Question:
    qtype = (r.get("type") or "mc").lower()
    if qtype not in ("mc", "tf"):
        qtype = "mc"
    choices = [r.get(k, "") for k in ("choiceA", "choiceB", "choiceC", "choiceD")]
    if qtype == "tf" and not any(choices):
        choices = ["T", "F"]
    return Question(
        id=r.get("id") or str(i),
        book_id=book_id,
        type=qtype,
        question=r.get("question", ""),
        question_zh=r.get("question_zh", ""),
        choices=[c for c in choices if c],
        answer=r.get("answer", ""),
        explain=r.get("explain", ""),
        explain_zh=r.get("explain_zh", ""),
    )


class Catalog:
    """書目（books.csv）＋ 收藏集（靜態設定）＋ 題目（questions/{bookId}.csv）"""

    def __init__(self, books: List[Book], collections: Optional[List[Collection]] = None):
        self.books: Dict[str, Book] = {b.id: b for b in books}
        self.collections: Dict[str, Collection] = {}
        for c in collections if collections is not None else [founding_collection()]:
            members = [b.id for b in books if c.id in b.collection]
            self.collections[c.id] = c.model_copy(update={"book_ids": members})
        self._questions: Dict[str, List[Question]] = {}

    def list_books(self) -> List[Book]:
        return sorted(self.books.values(), key=lambda b: b.id)

    def get_book(self, book_id: str) -> Book:
        book = self.books.get(book_id)
        if book is None:
            raise NotFoundError(f"Book not found: {book_id}")
        return book

    def get_collection(self, collection_id: str) -> Collection:
        c = self.collections.get(collection_id)
        if c is None:
            raise NotFoundError(f"Collection not found: {collection_id}")
        return c

    def questions(self, book_id: str) -> List[Question]:
        self.get_book(book_id)
        if book_id not in self._questions:
            try:
                rows = read_rows(f"questions/{book_id}.csv")
            except FileNotFoundError:
                logger.warning("No question pack for book %s", book_id)
                rows = []
            self._questions[book_id] = [question_from_row(book_id, i, r) for i, r in enumerate(rows, start=1)]
        return self._questions[book_id]

    def get_question(self, book_id: str, question_id: str) -> Question:
        for q in self.questions(book_id):
            if q.id == question_id:
                return q
        raise NotFoundError(f"Question not found: {book_id}/{question_id}")

    def total_questions(self, book_id: str) -> int:
        # books.csv 有寫就用，否則數題目
        return self.get_book(book_id).total_questions or len(self.questions(book_id))


def load_catalog() -> Catalog:
    books = [book_from_row(r) for r in read_rows("books.csv") if r.get("id")]
    logger.info("Loaded %d books", len(books))
    return Catalog(books)


@lru_cache(maxsize=1)
def get_catalog() -> Catalog:
    return load_catalog()
