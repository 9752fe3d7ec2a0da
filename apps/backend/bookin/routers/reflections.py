# bookin/routers/reflections.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ..catalog import Catalog
from ..deps import current_user_id, get_catalog, get_store
from ..docstore import DocumentStore
from ..errors import ValidationError
from ..reflections import (
    ReflectionEntry,
    add_reflection,
    get_all_reflections,
    get_reflections,
    update_reflection,
)

router = APIRouter(prefix="/reflections", tags=["reflections"])


class ReflectionIn(BaseModel):
    bookId: str
    questionId: str = ""
    content: str


class ReflectionPatch(BaseModel):
    content: Optional[str] = None
    completed: Optional[bool] = None


@router.get("")
def list_reflections(
    book_id: Optional[str] = Query(None, alias="bookId"),
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(get_store),
):
    entries = get_reflections(store, user_id, book_id) if book_id else get_all_reflections(store, user_id)
    return [e.to_doc() for e in entries]


@router.post("")
def create_reflection(
    body: ReflectionIn,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(get_store),
    catalog: Catalog = Depends(get_catalog),
):
    if not body.content.strip():
        raise ValidationError("content is required")
    book = catalog.get_book(body.bookId)
    entry = add_reflection(
        store,
        ReflectionEntry(user_id=user_id, book_id=book.id, question_id=body.questionId, content=body.content.strip()),
    )
    return entry.to_doc()


@router.patch("/{reflection_id}")
def patch_reflection(
    reflection_id: str,
    body: ReflectionPatch,
    user_id: str = Depends(current_user_id),
    store: DocumentStore = Depends(get_store),
):
    entry = update_reflection(store, user_id, reflection_id, content=body.content, completed=body.completed)
    return entry.to_doc()
