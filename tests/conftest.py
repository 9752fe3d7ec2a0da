# -*- coding: utf-8 -*-
import hashlib
import hmac
import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Set test environment variables before bookin is imported
CONTENT_DIR = Path(__file__).resolve().parents[1] / "apps" / "backend" / "content"
WEBHOOK_SECRET = "whsec_test_secret"

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy_key_for_testing"
os.environ["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["JWT_SECRET"] = "test-jwt-secret-with-enough-length-for-hs256"
os.environ["CSV_BASE_PATH"] = str(CONTENT_DIR)
os.environ["DATA_MODE"] = "local_csv"
os.environ.pop("PAYMENT_MODE", None)

from fastapi.testclient import TestClient  # noqa: E402

from bookin import models  # noqa: E402,F401
from bookin.auth.auth_utils import create_access_token  # noqa: E402
from bookin.catalog import Book, Catalog, Collection  # noqa: E402
from bookin.database import Base, SessionLocal, engine  # noqa: E402
from bookin.deps import get_catalog, get_entitlement_cache, get_store  # noqa: E402
from bookin.docstore import DocumentStore  # noqa: E402
from bookin.entitlements import EntitlementCache, fetch_entitlements  # noqa: E402


PAID_BOOK = "atomic-habits"
FREE_BOOK = "the-little-prince"
OTHER_PAID_BOOK = "deep-work"
COLLECTION_ID = "starter-collection"


def make_catalog() -> Catalog:
    books = [
        Book(
            id=PAID_BOOK,
            title="Atomic Habits",
            title_zh="原子習慣",
            price=9.0,
            collection=[COLLECTION_ID],
            lifetime_price_id="price_atomic_lifetime",
            subscription_price_id="price_atomic_quarterly",
        ),
        Book(
            id=OTHER_PAID_BOOK,
            title="Deep Work",
            price=9.0,
            lifetime_price_id="price_deep_work_lifetime",
        ),
        Book(id=FREE_BOOK, title="The Little Prince", title_zh="小王子", is_free=True),
    ]
    collections = [
        Collection(
            id=COLLECTION_ID,
            translation_key="starter",
            price=19.99,
            provider_product_id="price_starter_collection",
        ),
        Collection(
            id="2026-founding-collection",
            translation_key="founding_2026",
            price=9.99,
            expires_at=datetime(2026, 1, 31, 23, 59, 59, tzinfo=timezone.utc),
            provider_product_id="price_founding",
        ),
    ]
    return Catalog(books, collections)


@pytest.fixture
def store():
    """Fresh document table for each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield DocumentStore(SessionLocal)
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def catalog():
    return make_catalog()


@pytest.fixture
def cache(store):
    return EntitlementCache(fetch=lambda uid: fetch_entitlements(store, uid), ttl_seconds=300)


@pytest.fixture
def client(store, catalog, cache):
    from bookin.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_entitlement_cache] = lambda: cache
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth_header(user_id: str = "user-1", email: str = "reader@example.com") -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id=user_id, email=email)}"}


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a stripe-signature header the same way Stripe does."""
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.".encode() + payload
    sig = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def event_body(event_type: str, obj: dict, event_id: str = "evt_test") -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()
