# apps/backend/bookin/docstore.py
"""
Document store with Firestore semantics on top of SQLAlchemy.

Every per-user record lives under a slash-separated path
(`users/{userId}/purchases/{bookId}` ...). Writes support a full replace,
a shallow merge, create-if-absent and update-if-present. Any
`SERVER_TIMESTAMP` value is resolved with the store's clock at write time.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .models import Document

_TS_KEY = "__timestamp__"
_DATE_KEY = "__date__"


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def doc_path(*parts: str) -> str:
    """doc_path("users", uid, "purchases", book_id) → "users/uid/purchases/book_id" """
    cleaned = []
    for p in parts:
        s = str(p or "").strip()
        if not s or "/" in s:
            raise ValueError(f"invalid path segment: {p!r}")
        cleaned.append(s)
    return "/".join(cleaned)


def _split(path: str) -> tuple[str, str]:
    parent, _, doc_id = path.rpartition("/")
    if not parent or not doc_id:
        raise ValueError(f"not a document path: {path!r}")
    return parent, doc_id


# === JSON 編碼：datetime / date 需要標記先可以還原 ==========================
def _encode(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return {_TS_KEY: now.isoformat()}
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {_TS_KEY: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_KEY: value.isoformat()}
    if isinstance(value, dict):
        return {str(k): _encode(v, now) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_encode(v, now) for v in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if len(value) == 1 and _TS_KEY in value:
            return datetime.fromisoformat(value[_TS_KEY])
        if len(value) == 1 and _DATE_KEY in value:
            return date.fromisoformat(value[_DATE_KEY])
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    return value


@dataclass
class DocumentSnapshot:
    id: str
    path: str
    _data: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)


class DocumentStore:
    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    # --- read ---------------------------------------------------------------
    def get(self, path: str) -> Optional[Dict[str, Any]]:
        with self._session_factory() as s:
            row = s.get(Document, path)
            return _decode(row.data) if row else None

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def list(self, collection: str) -> List[DocumentSnapshot]:
        with self._session_factory() as s:
            rows = s.scalars(
                select(Document).where(Document.parent == collection).order_by(Document.doc_id)
            ).all()
            return [DocumentSnapshot(id=r.doc_id, path=r.path, _data=_decode(r.data)) for r in rows]

    # --- write --------------------------------------------------------------
    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        """Replace the document, or with merge=True overwrite only the given top-level keys."""
        parent, doc_id = _split(path)
        encoded = _encode(data, self._clock())
        with self._session_factory() as s, s.begin():
            row = s.get(Document, path)
            if row is None:
                s.add(Document(path=path, parent=parent, doc_id=doc_id, data=encoded))
            elif merge:
                row.data = {**(row.data or {}), **encoded}
            else:
                row.data = encoded

    def create(self, path: str, data: Dict[str, Any]) -> bool:
        """Write only if absent. Returns False when the document already exists."""
        parent, doc_id = _split(path)
        encoded = _encode(data, self._clock())
        try:
            with self._session_factory() as s, s.begin():
                if s.get(Document, path) is not None:
                    return False
                s.add(Document(path=path, parent=parent, doc_id=doc_id, data=encoded))
        except IntegrityError:
            # 另一個 request 同時寫入咗
            return False
        return True

    def replace_unless(self, path: str, data: Dict[str, Any], field: str, frozen_value: Any) -> bool:
        """
        Replace the document unless its stored `field` equals `frozen_value`.
        Returns False (and writes nothing) for a frozen document.
        """
        parent, doc_id = _split(path)
        encoded = _encode(data, self._clock())
        try:
            with self._session_factory() as s, s.begin():
                row = s.get(Document, path)
                if row is None:
                    s.add(Document(path=path, parent=parent, doc_id=doc_id, data=encoded))
                elif (row.data or {}).get(field) == frozen_value:
                    return False
                else:
                    row.data = encoded
        except IntegrityError:
            return False
        return True

    def update(self, path: str, data: Dict[str, Any]) -> bool:
        """Merge into an existing document. Returns False (and writes nothing) if it is missing."""
        encoded = _encode(data, self._clock())
        with self._session_factory() as s, s.begin():
            row = s.get(Document, path)
            if row is None:
                return False
            row.data = {**(row.data or {}), **encoded}
        return True

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(f"{collection}/{doc_id}", data)
        return doc_id
