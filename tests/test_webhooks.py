# -*- coding: utf-8 -*-
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from bookin.docstore import doc_path
from bookin.errors import AuthenticationError, NotConfiguredError
from bookin.webhooks import plan_writes, reconcile, subscription_periods, verify_event
from conftest import COLLECTION_ID, PAID_BOOK, auth_header, event_body, sign_payload

PERIOD_START = 1767225600   # 2026-01-01T00:00:00Z
PERIOD_END = 1775001600     # 2026-04-01T00:00:00Z
LATER_END = 1782864000      # 2026-07-01T00:00:00Z


def _checkout(**metadata):
    return {
        "id": "cs_test_1",
        "object": "checkout.session",
        "amount_total": 900,
        "payment_intent": "pi_test_1",
        "metadata": metadata,
    }


def _subscription(status="active", start=PERIOD_START, end=PERIOD_END, **extra):
    obj = {
        "id": "sub_test_1",
        "object": "subscription",
        "status": status,
        "customer": "cus_test_1",
        "cancel_at_period_end": False,
        "current_period_start": start,
        "current_period_end": end,
        "metadata": {"userId": "user-1", "bookId": PAID_BOOK},
    }
    obj.update(extra)
    return obj


def _post(client, event_type, obj, event_id="evt_test"):
    body = event_body(event_type, obj, event_id)
    return client.post(
        "/webhook/stripe",
        content=body,
        headers={"stripe-signature": sign_payload(body), "content-type": "application/json"},
    )


class TestVerifyEvent:
    def test_valid_signature(self):
        body = event_body("invoice.payment_failed", {"id": "in_1"})
        event = verify_event(body, sign_payload(body), "whsec_test_secret")
        assert event["type"] == "invoice.payment_failed"

    def test_wrong_secret(self):
        body = event_body("invoice.payment_failed", {"id": "in_1"})
        with pytest.raises(AuthenticationError) as exc:
            verify_event(body, sign_payload(body, secret="whsec_other"), "whsec_test_secret")
        assert exc.value.status_code == 400

    def test_missing_header(self):
        with pytest.raises(AuthenticationError):
            verify_event(b"{}", None, "whsec_test_secret")

    def test_missing_secret(self):
        with pytest.raises(NotConfiguredError):
            verify_event(b"{}", "t=1,v1=abc", None)


class TestPlanWrites:
    def test_lifetime_checkout_plans_purchase(self):
        handled, ops = plan_writes(
            {"type": "checkout.session.completed",
             "data": {"object": _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="lifetime")}}
        )
        assert handled is True
        assert len(ops) == 1
        op = ops[0]
        assert op.kind == "complete"
        assert op.path == f"users/user-1/purchases/{PAID_BOOK}"
        assert op.data["price"] == 9.0
        assert op.data["transactionId"] == "pi_test_1"
        assert op.data["paymentMethod"] == "stripe"

    def test_subscription_checkout_waits_for_subscription_event(self):
        _, ops = plan_writes(
            {"type": "checkout.session.completed",
             "data": {"object": _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="subscription")}}
        )
        assert ops == []

    def test_checkout_without_user_is_skipped(self):
        handled, ops = plan_writes({"type": "checkout.session.completed", "data": {"object": _checkout()}})
        assert handled is True
        assert ops == []

    def test_unknown_event_not_handled(self):
        assert plan_writes({"type": "customer.created", "data": {"object": {}}}) == (False, [])

    def test_period_falls_back_to_items(self):
        sub = _subscription(start=None, end=None)
        sub["items"] = {"data": [{"current_period_start": PERIOD_START, "current_period_end": PERIOD_END}]}
        start, end = subscription_periods(sub)
        assert start == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert end == datetime(2026, 4, 1, tzinfo=timezone.utc)


class TestReconcile:
    def test_lifetime_purchase_end_to_end(self, store):
        event = {"id": "evt_1", "type": "checkout.session.completed",
                 "data": {"object": _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="lifetime")}}
        result = reconcile(store, event)
        assert result.applied == 1
        assert result.users == {"user-1"}

        doc = store.get(doc_path("users", "user-1", "purchases", PAID_BOOK))
        assert doc["price"] == 9.0
        assert doc["status"] == "completed"
        assert isinstance(doc["purchasedAt"], datetime)

    def test_checkout_is_idempotent(self, store):
        event = {"id": "evt_1", "type": "checkout.session.completed",
                 "data": {"object": _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="lifetime")}}
        reconcile(store, event)
        first = store.get(doc_path("users", "user-1", "purchases", PAID_BOOK))
        again = reconcile(store, event)
        assert again.applied == 0
        assert again.skipped == 1
        assert store.get(doc_path("users", "user-1", "purchases", PAID_BOOK)) == first
        assert len(store.list(doc_path("users", "user-1", "purchases"))) == 1

    @pytest.mark.parametrize("status", ["pending", "failed", "refunded"])
    def test_unfinished_purchase_is_replaced(self, store, status):
        path = doc_path("users", "user-1", "purchases", PAID_BOOK)
        store.set(path, {"bookId": PAID_BOOK, "userId": "user-1", "status": status, "transactionId": "pi_old"})
        event = {"type": "checkout.session.completed",
                 "data": {"object": _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="lifetime")}}
        result = reconcile(store, event)
        assert result.applied == 1
        doc = store.get(path)
        assert doc["status"] == "completed"
        assert doc["transactionId"] == "pi_test_1"

    def test_completed_purchase_is_kept(self, store):
        path = doc_path("users", "user-1", "purchases", PAID_BOOK)
        store.set(path, {"bookId": PAID_BOOK, "userId": "user-1", "status": "completed", "transactionId": "pi_old"})
        event = {"type": "checkout.session.completed",
                 "data": {"object": _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="lifetime")}}
        assert reconcile(store, event).skipped == 1
        assert store.get(path)["transactionId"] == "pi_old"

    def test_refunded_collection_is_replaced(self, store):
        path = doc_path("users", "user-1", "collectionPurchases", COLLECTION_ID)
        store.set(path, {"collectionId": COLLECTION_ID, "userId": "user-1", "status": "refunded"})
        reconcile(store, {"type": "checkout.session.completed",
                          "data": {"object": _checkout(userId="user-1", type="collection", collectionId=COLLECTION_ID)}})
        assert store.get(path)["status"] == "completed"

    @pytest.mark.parametrize("metadata", [
        {"userId": " ", "bookId": PAID_BOOK},
        {"userId": "user-1", "bookId": "a/b"},
        {"userId": "user/1", "bookId": PAID_BOOK},
    ])
    def test_created_with_bad_metadata_is_skipped(self, store, metadata):
        result = reconcile(store, {"type": "customer.subscription.created",
                                   "data": {"object": _subscription(metadata=metadata)}})
        assert result.handled is True
        assert result.applied == 0

    @pytest.mark.parametrize("event_type", ["customer.subscription.updated", "customer.subscription.deleted"])
    def test_changed_with_bad_user_is_skipped(self, store, event_type):
        result = reconcile(store, {"type": event_type,
                                   "data": {"object": _subscription(metadata={"userId": "a/b"})}})
        assert result.handled is True
        assert result.applied == result.skipped == 0

    def test_ids_are_stripped(self, store):
        reconcile(store, {"type": "customer.subscription.created",
                          "data": {"object": _subscription(metadata={"userId": " user-1 ", "bookId": PAID_BOOK})}})
        assert store.get(doc_path("users", "user-1", "subscriptions", "sub_test_1"))["userId"] == "user-1"

    @pytest.mark.parametrize("metadata", [
        {"userId": "user-1", "bookId": "x/y", "paymentType": "lifetime"},
        {"userId": "user-1", "type": "collection", "collectionId": "c/1"},
    ])
    def test_checkout_with_slash_id_is_skipped(self, store, metadata):
        result = reconcile(store, {"type": "checkout.session.completed", "data": {"object": _checkout(**metadata)}})
        assert result.applied == 0
        assert store.list(doc_path("users", "user-1", "purchases")) == []

    def test_collection_purchase(self, store):
        event = {"type": "checkout.session.completed",
                 "data": {"object": _checkout(userId="user-1", type="collection", collectionId=COLLECTION_ID)}}
        reconcile(store, event)
        doc = store.get(doc_path("users", "user-1", "collectionPurchases", COLLECTION_ID))
        assert doc["collectionId"] == COLLECTION_ID
        assert doc["status"] == "completed"

    def test_subscription_lifecycle(self, store):
        path = doc_path("users", "user-1", "subscriptions", "sub_test_1")
        reconcile(store, {"type": "customer.subscription.created", "data": {"object": _subscription()}})
        assert store.get(path)["status"] == "active"

        reconcile(store, {"type": "customer.subscription.updated",
                          "data": {"object": _subscription(end=LATER_END, cancel_at_period_end=True)}})
        doc = store.get(path)
        assert doc["currentPeriodEnd"] == datetime(2026, 7, 1, tzinfo=timezone.utc)
        assert doc["cancelAtPeriodEnd"] is True
        assert doc["bookId"] == PAID_BOOK

        reconcile(store, {"type": "customer.subscription.deleted",
                          "data": {"object": _subscription(status="canceled", end=LATER_END)}})
        doc = store.get(path)
        assert doc["status"] == "canceled"
        assert doc["providerCustomerId"] == "cus_test_1"

    def test_created_without_period_writes_nothing(self, store):
        result = reconcile(store, {"type": "customer.subscription.created",
                                   "data": {"object": _subscription(start=None, end=None)}})
        assert result.handled is True
        assert result.applied == 0
        assert store.list(doc_path("users", "user-1", "subscriptions")) == []

    def test_update_for_unknown_subscription_is_noop(self, store):
        result = reconcile(store, {"type": "customer.subscription.updated", "data": {"object": _subscription()}})
        assert result.applied == 0
        assert result.skipped == 1
        assert store.get(doc_path("users", "user-1", "subscriptions", "sub_test_1")) is None


class TestWebhookRoute:
    def test_lifetime_scenario_unlocks_book(self, client):
        headers = auth_header("user-1")
        assert client.get(f"/api/books/{PAID_BOOK}/access", headers=headers).json()["hasAccess"] is False

        res = _post(client, "checkout.session.completed",
                    _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="lifetime"))
        assert res.status_code == 200
        assert res.json() == {"received": True}

        # webhook 寫完即刻 invalidate cache
        access = client.get(f"/api/books/{PAID_BOOK}/access", headers=headers).json()
        assert access["hasAccess"] is True
        assert access["reason"] == "purchase"

        purchases = client.get("/api/entitlements", headers=headers).json()["purchases"]
        assert purchases[0]["price"] == 9.0

    def test_duplicate_delivery_is_acknowledged(self, client, store):
        obj = _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="lifetime")
        assert _post(client, "checkout.session.completed", obj).status_code == 200
        assert _post(client, "checkout.session.completed", obj).status_code == 200
        assert len(store.list(doc_path("users", "user-1", "purchases"))) == 1

    def test_unknown_event_is_acknowledged(self, client):
        res = _post(client, "customer.created", {"id": "cus_1"})
        assert res.status_code == 200

    def test_missing_period_is_acknowledged(self, client):
        res = _post(client, "customer.subscription.created", _subscription(start=None, end=None))
        assert res.status_code == 200

    def test_bad_metadata_is_acknowledged(self, client, store):
        res = _post(client, "customer.subscription.created",
                    _subscription(metadata={"userId": " ", "bookId": PAID_BOOK}))
        assert res.status_code == 200
        assert res.json() == {"received": True}

    def test_bad_signature_is_400(self, client, store):
        body = event_body("checkout.session.completed",
                          _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="lifetime"))
        res = client.post("/webhook/stripe", content=body,
                          headers={"stripe-signature": sign_payload(body, secret="whsec_forged")})
        assert res.status_code == 400
        assert store.list(doc_path("users", "user-1", "purchases")) == []

    def test_missing_signature_is_400(self, client):
        res = client.post("/webhook/stripe", content=b"{}")
        assert res.status_code == 400

    def test_missing_secret_is_500(self, client, monkeypatch):
        monkeypatch.delenv("STRIPE_WEBHOOK_SECRET", raising=False)
        res = _post(client, "customer.created", {"id": "cus_1"})
        assert res.status_code == 500

    def test_write_failure_is_500(self, client, store):
        with patch.object(store, "replace_unless", side_effect=RuntimeError("db down")):
            res = _post(client, "checkout.session.completed",
                        _checkout(userId="user-1", bookId=PAID_BOOK, paymentType="lifetime"))
        assert res.status_code == 500
        assert res.json() == {"error": "Webhook processing failed"}

    def test_api_prefix_also_works(self, client):
        body = event_body("customer.created", {"id": "cus_1"})
        res = client.post("/api/webhook/stripe", content=body, headers={"stripe-signature": sign_payload(body)})
        assert res.status_code == 200
