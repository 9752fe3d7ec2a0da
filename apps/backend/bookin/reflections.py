# bookin/reflections.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from .docstore import DocumentStore, doc_path, utcnow
from .errors import NotFoundError
from .schemas import CamelModel


class ReflectionEntry(CamelModel):
    id: str = ""
    user_id: str
    book_id: str
    question_id: str = ""
    content: str
    created_at: Optional[datetime] = None
    completed: bool = False
    completed_at: Optional[datetime] = None


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def reflections_path(user_id: str) -> str:
    return doc_path("users", user_id, "reflections")


def _newest_first(entries: List[ReflectionEntry]) -> List[ReflectionEntry]:
    return sorted(entries, key=lambda e: e.created_at or _EPOCH, reverse=True)


def add_reflection(store: DocumentStore, entry: ReflectionEntry) -> ReflectionEntry:
    entry = entry.model_copy(update={"created_at": entry.created_at or utcnow()})
    data = entry.to_doc(exclude={"id"})
    new_id = store.add(reflections_path(entry.user_id), data)
    return entry.model_copy(update={"id": new_id})


def get_all_reflections(store: DocumentStore, user_id: str) -> List[ReflectionEntry]:
    entries = []
    for snap in store.list(reflections_path(user_id)):
        data = snap.to_dict()
        data["id"] = snap.id
        data.setdefault("userId", user_id)
        entries.append(ReflectionEntry.model_validate(data))
    return _newest_first(entries)


def get_reflections(store: DocumentStore, user_id: str, book_id: str) -> List[ReflectionEntry]:
    return [e for e in get_all_reflections(store, user_id) if e.book_id == book_id]


def update_reflection(
    store: DocumentStore,
    user_id: str,
    reflection_id: str,
    content: Optional[str] = None,
    completed: Optional[bool] = None,
) -> ReflectionEntry:
    updates: dict = {}
    if content is not None:
        updates["content"] = content
    if completed is not None:
        updates["completed"] = completed
        updates["completedAt"] = utcnow() if completed else None

    path = doc_path("users", user_id, "reflections", reflection_id)
    if updates:
        found = store.update(path, updates)
    else:
        found = store.exists(path)
    if not found:
        raise NotFoundError(f"Reflection not found: {reflection_id}")

    data = store.get(path) or {}
    data["id"] = reflection_id
    data.setdefault("userId", user_id)
    return ReflectionEntry.model_validate(data)
