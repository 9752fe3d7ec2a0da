# bookin/entitlements.py
"""
Entitlement model: who can open which book.

A user can open a book when any of these holds:
  1. the book is free
  2. a completed Purchase exists for (user, book)
  3. a Subscription for (user, book) has status active/trialing and
     current_period_end > now
  4. the book belongs to a collection the user bought (completed)

Subscriptions are judged at read time with the caller's `now`, so a
lapsed period locks the book even if the cancellation webhook has not
arrived yet.

EntitlementCache keeps one snapshot per user for `ttl` seconds. When a
refetch fails it keeps serving the last snapshot it had (marked stale)
and records the error: availability is preferred over freshness, so a
network blip never locks a book the user already owns.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Literal, Optional, Set

from .catalog import Book
from .docstore import DocumentStore, doc_path, utcnow
from .schemas import CamelModel

logger = logging.getLogger(__name__)

PaymentMethod = Literal["stripe", "paypal", "mock"]
PurchaseStatus = Literal["pending", "completed", "failed", "refunded"]
SubscriptionStatus = Literal["active", "trialing", "past_due", "incomplete", "incomplete_expired", "unpaid", "paused", "canceled"]

ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})

AccessReason = Literal["free", "purchase", "subscription", "collection"]


# === Firestore 路徑 ============================================================
def purchases_path(user_id: str) -> str:
    return doc_path("users", user_id, "purchases")


def subscriptions_path(user_id: str) -> str:
    return doc_path("users", user_id, "subscriptions")


def collection_purchases_path(user_id: str) -> str:
    return doc_path("users", user_id, "collectionPurchases")


# === Records ===================================================================
class Purchase(CamelModel):
    id: str = ""
    user_id: str
    book_id: str
    purchased_at: Optional[datetime] = None
    price: float = 0.0
    payment_method: PaymentMethod = "stripe"
    transaction_id: str = ""
    status: PurchaseStatus = "completed"

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class Subscription(CamelModel):
    id: str
    user_id: str
    book_id: str
    status: str = "incomplete"
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    provider_subscription_id: str = ""
    provider_customer_id: str = ""
    created_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        if self.status not in ACTIVE_SUBSCRIPTION_STATUSES:
            return False
        return self.current_period_end is not None and self.current_period_end > now


class CollectionPurchase(CamelModel):
    collection_id: str
    user_id: str
    purchased_at: Optional[datetime] = None
    price: float = 0.0
    payment_method: PaymentMethod = "stripe"
    transaction_id: str = ""
    status: PurchaseStatus = "completed"


# === Snapshot ==================================================================
@dataclass
class EntitlementSnapshot:
    user_id: str
    purchases: List[Purchase] = field(default_factory=list)
    subscriptions: List[Subscription] = field(default_factory=list)
    collection_purchases: List[CollectionPurchase] = field(default_factory=list)
    fetched_at: Optional[datetime] = None
    stale: bool = False
    error: Optional[str] = None

    def owns_book(self, book_id: str) -> bool:
        return any(p.book_id == book_id and p.is_completed for p in self.purchases)

    def active_subscription(self, book_id: str, now: datetime) -> Optional[Subscription]:
        for sub in self.subscriptions:
            if sub.book_id == book_id and sub.is_active(now):
                return sub
        return None

    def owned_collections(self) -> Set[str]:
        return {c.collection_id for c in self.collection_purchases if c.status == "completed"}

    def has_collection(self, collection_id: str) -> bool:
        return collection_id in self.owned_collections()

    def access_reason(self, book: Book, now: Optional[datetime] = None) -> Optional[AccessReason]:
        now = now or utcnow()
        if book.is_free:
            return "free"
        if self.owns_book(book.id):
            return "purchase"
        if self.active_subscription(book.id, now) is not None:
            return "subscription"
        if set(book.collection) & self.owned_collections():
            return "collection"
        return None

    def has_access(self, book: Book, now: Optional[datetime] = None) -> bool:
        return self.access_reason(book, now) is not None


def _with_id(snap, key: str) -> dict:
    data = snap.to_dict()
    data.setdefault(key, snap.id)
    return data


def fetch_entitlements(store: DocumentStore, user_id: str) -> EntitlementSnapshot:
    """一次過讀晒 users/{uid}/purchases、subscriptions、collectionPurchases"""
    purchases = []
    for snap in store.list(purchases_path(user_id)):
        data = _with_id(snap, "bookId")
        data.setdefault("userId", user_id)
        data["id"] = snap.id
        purchases.append(Purchase.model_validate(data))

    subscriptions = []
    for snap in store.list(subscriptions_path(user_id)):
        data = snap.to_dict()
        data["id"] = snap.id
        data.setdefault("userId", user_id)
        data.setdefault("providerSubscriptionId", snap.id)
        if not data.get("bookId"):
            logger.warning("Subscription %s for %s has no bookId, ignored", snap.id, user_id)
            continue
        subscriptions.append(Subscription.model_validate(data))

    collection_purchases = []
    for snap in store.list(collection_purchases_path(user_id)):
        data = _with_id(snap, "collectionId")
        data.setdefault("userId", user_id)
        collection_purchases.append(CollectionPurchase.model_validate(data))

    return EntitlementSnapshot(
        user_id=user_id,
        purchases=purchases,
        subscriptions=subscriptions,
        collection_purchases=collection_purchases,
        fetched_at=utcnow(),
    )


# === Cache =====================================================================
@dataclass
class _Entry:
    snapshot: EntitlementSnapshot
    loaded_at: Optional[float]     # monotonic 秒；None = 未成功讀過


class EntitlementCache:
    """
    Per-user read replica of entitlement records.

    `fetch` and `clock` are injected so TTL expiry can be tested without
    real time passing. Reads inside the TTL return the same snapshot;
    `force=True` always refetches.
    """

    def __init__(
        self,
        fetch: Callable[[str], EntitlementSnapshot],
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
    ):
        self._fetch = fetch
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._now = now
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _fresh(self, entry: Optional[_Entry]) -> bool:
        if entry is None or entry.loaded_at is None:
            return False
        return self._clock() - entry.loaded_at < self.ttl_seconds

    def get(self, user_id: str, force: bool = False) -> EntitlementSnapshot:
        with self._lock:
            entry = self._entries.get(user_id)
            if not force and self._fresh(entry):
                return entry.snapshot

        try:
            snapshot = self._fetch(user_id)
        except Exception as e:
            logger.warning("Entitlement fetch failed for %s, serving cached data: %s", user_id, e)
            with self._lock:
                entry = self._entries.get(user_id)
                previous = entry.snapshot if entry else EntitlementSnapshot(user_id=user_id)
                stale = replace(previous, stale=True, error=str(e))
                # loaded_at 唔變：下次 get 會再試
                self._entries[user_id] = _Entry(stale, entry.loaded_at if entry else None)
                return stale

        snapshot = replace(snapshot, stale=False, error=None)
        with self._lock:
            self._entries[user_id] = _Entry(snapshot, self._clock())
        return snapshot

    def has_access(self, user_id: Optional[str], book: Book, force: bool = False) -> bool:
        if book.is_free:
            return True
        if not user_id:
            return False
        return self.get(user_id, force=force).has_access(book, self._now())

    def access_reason(self, user_id: Optional[str], book: Book) -> Optional[AccessReason]:
        if book.is_free:
            return "free"
        if not user_id:
            return None
        return self.get(user_id).access_reason(book, self._now())

    def has_collection_access(self, user_id: Optional[str], collection_id: str) -> bool:
        if not user_id:
            return False
        return self.get(user_id).has_collection(collection_id)

    # --- 即時更新（唔使等 refetch）------------------------------------------
    def _append(self, user_id: str, update: Callable[[EntitlementSnapshot], EntitlementSnapshot]) -> None:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                # 未讀過：下次 get 會由 DB 讀返，唔需要塞住
                return
            self._entries[user_id] = _Entry(update(entry.snapshot), entry.loaded_at)

    def add_purchase(self, purchase: Purchase) -> None:
        self._append(
            purchase.user_id,
            lambda s: replace(s, purchases=[p for p in s.purchases if p.book_id != purchase.book_id] + [purchase]),
        )

    def add_subscription(self, subscription: Subscription) -> None:
        self._append(
            subscription.user_id,
            lambda s: replace(s, subscriptions=[x for x in s.subscriptions if x.id != subscription.id] + [subscription]),
        )

    def add_collection_purchase(self, cp: CollectionPurchase) -> None:
        self._append(
            cp.user_id,
            lambda s: replace(
                s,
                collection_purchases=[c for c in s.collection_purchases if c.collection_id != cp.collection_id] + [cp],
            ),
        )

    # --- invalidation -------------------------------------------------------
    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def is_stale(self, user_id: str) -> bool:
        with self._lock:
            entry = self._entries.get(user_id)
            return bool(entry and entry.snapshot.stale)
