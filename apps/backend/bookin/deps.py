# bookin/deps.py
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Header

from . import config
from .auth.auth_utils import user_id_from_authorization
from .catalog import Catalog, get_catalog as _load_catalog
from .database import SessionLocal
from .docstore import DocumentStore
from .entitlements import EntitlementCache, fetch_entitlements

# FastAPI 依賴注入用；測試用 app.dependency_overrides 換走


@lru_cache(maxsize=1)
def get_store() -> DocumentStore:
    return DocumentStore(SessionLocal)


@lru_cache(maxsize=1)
def get_entitlement_cache() -> EntitlementCache:
    store = get_store()
    return EntitlementCache(
        fetch=lambda user_id: fetch_entitlements(store, user_id),
        ttl_seconds=config.entitlement_cache_ttl(),
    )


def get_catalog() -> Catalog:
    return _load_catalog()


def current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    return user_id_from_authorization(authorization)


def optional_user_id(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    if not authorization:
        return None
    return user_id_from_authorization(authorization)
