"""HTTP-layer tests for the Shopee webhook receiver, end to end through the workers."""

import json
import time
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from backend.config.settings import Settings
from backend.database.models import Order, Platform, Product, WebhookRecord, WebhookStatus
from backend.services.job_queue import INVENTORY_QUEUE, INVENTORY_TASK, ORDER_QUEUE, ORDER_TASK, JobQueue, queue_definitions
from backend.services.shopee_webhook import compute_signature
from backend.tasks.base import QueueTask
from backend.tasks.webhook_tasks import process_inventory_webhook, process_order_webhook

PARTNER_KEY = "test-partner-key"
AUTHORIZATION = "shopee-push"

ORDER_CREATED = {
    "event_type": "order.created",
    "shop_id": 5001,
    "order_id": "991",
    "order_sn": "SN-1",
    "total_amount": 500000,
    "items": [{"item_id": "A", "item_name": "Widget", "quantity": 2, "item_price": 250000}],
}


@pytest.fixture
def send_task():
    return MagicMock()


@pytest.fixture
def queue(test_session, send_task):
    return JobQueue(test_session, send_task, queue_definitions(Settings()))


@pytest.fixture
def client(test_session, queue):
    with patch("backend.database.db.SessionLocal", test_session):
        from backend.api.app import create_app
        app = create_app(job_queue=queue)
        yield TestClient(app)


def _post(client, payload=None, body=None, timestamp=None, signature=None, base_url="http://testserver"):
    body = body if body is not None else json.dumps(payload).encode()
    timestamp = str(int(time.time()) if timestamp is None else timestamp)
    path = f"/webhooks/shopee?timestamp={timestamp}"
    if signature is None:
        signature = compute_signature(PARTNER_KEY, AUTHORIZATION, base_url + path, timestamp, body)
    return client.post(
        path,
        content=body,
        headers={
            "Authorization": AUTHORIZATION,
            "X-Shopee-Signature": signature,
            "Content-Type": "application/json",
        },
    )


def _drain(send_task, test_session, queue):
    """Run every dispatched job synchronously, like a worker would."""
    tasks = {ORDER_TASK: process_order_webhook, INVENTORY_TASK: process_inventory_webhook}
    results = []
    with patch("backend.tasks.webhook_tasks.SessionLocal", test_session), \
            patch.object(QueueTask, "_job_queue", queue):
        for call in send_task.call_args_list:
            results.append(tasks[call.args[0]](**call.kwargs["kwargs"]))
    send_task.reset_mock()
    return results


def _records(db):
    db.expire_all()
    return db.scalars(select(WebhookRecord)).all()


class TestRejections:

    def test_tampered_body_is_rejected(self, client, db, shop_id):
        body = json.dumps(ORDER_CREATED).encode()
        timestamp = str(int(time.time()))
        signature = compute_signature(
            PARTNER_KEY, AUTHORIZATION, f"http://testserver/webhooks/shopee?timestamp={timestamp}", timestamp, body
        )
        tampered = body.replace(b"500000", b"900000")

        resp = _post(client, body=tampered, timestamp=timestamp, signature=signature)

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid signature"
        assert _records(db) == []

    def test_stale_timestamp_is_rejected(self, client, db, shop_id):
        resp = _post(client, ORDER_CREATED, timestamp=int(time.time()) - 301)

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Invalid timestamp"
        assert _records(db) == []

    def test_missing_timestamp_is_rejected(self, client, shop_id):
        resp = client.post("/webhooks/shopee", content=b"{}", headers={"X-Shopee-Signature": "abc"})
        assert resp.status_code == 401

    def test_invalid_json_is_rejected(self, client, db, shop_id):
        resp = _post(client, body=b"{not json")

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid JSON"
        assert _records(db) == []

    def test_unknown_shop_is_rejected(self, client, db, shop_id, send_task):
        resp = _post(client, {**ORDER_CREATED, "shop_id": 999999})

        assert resp.status_code == 404
        assert _records(db) == []
        send_task.assert_not_called()

    def test_disconnected_shop_is_rejected(self, client, db, shop_id):
        from backend.services.integration_store import IntegrationCredentialStore
        IntegrationCredentialStore(db).disconnect(shop_id)

        resp = _post(client, ORDER_CREATED)

        assert resp.status_code == 404
        assert _records(db) == []

    def test_inventory_event_without_shop_id(self, client, db, shop_id):
        resp = _post(client, {"event_type": "product.updated", "item_id": "77"})

        assert resp.status_code == 400
        assert _records(db) == []

    def test_order_event_for_unknown_order_without_shop_id(self, client, db, shop_id):
        resp = _post(client, {"event_type": "order.status_updated", "order_id": "12345"})

        assert resp.status_code == 404
        assert _records(db) == []


class TestAccepted:

    def test_order_created_end_to_end(self, client, db, shop_id, send_task, test_session, queue):
        resp = _post(client, ORDER_CREATED)

        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        [record] = _records(db)
        assert record.status == WebhookStatus.PENDING
        assert record.retry_count == 0
        assert record.shop_id == shop_id
        assert record.raw_payload == ORDER_CREATED
        send_task.assert_called_once_with(
            ORDER_TASK,
            kwargs={
                "webhook_id": record.id,
                "shop_id": shop_id,
                "platform": "SHOPEE",
                "event_type": "order.created",
                "job_key": f"order:{record.id}",
            },
            queue=ORDER_QUEUE,
            countdown=None,
        )

        [result] = _drain(send_task, test_session, queue)

        assert result["status"] == "processed"
        [record] = _records(db)
        assert record.status == WebhookStatus.COMPLETED
        [order] = db.scalars(select(Order)).all()
        assert order.total_amount == Decimal("5.00")
        assert order.order_number == "SN-1"
        assert order.platform == Platform.SHOPEE
        assert len(order.items) == 1
        assert order.items[0]["quantity"] == 2
        assert order.items[0]["unit_price"] == "2.50"

    def test_product_deleted_end_to_end(self, client, db, shop_id, send_task, test_session, queue):
        db.add(Product(shop_id=shop_id, shopee_product_id="77", name="Mug", stock=1, price=Decimal("1.00")))
        db.commit()

        resp = _post(client, {"event_type": "product.deleted", "shop_id": 5001, "item_id": "77"})

        assert resp.status_code == 200
        assert send_task.call_args.kwargs["queue"] == INVENTORY_QUEUE
        _drain(send_task, test_session, queue)

        db.expire_all()
        assert db.scalars(select(Product)).all() == []
        [record] = _records(db)
        assert record.status == WebhookStatus.COMPLETED

    def test_identical_delivery_twice_gives_one_order(self, client, db, shop_id, send_task, test_session, queue):
        assert _post(client, ORDER_CREATED).status_code == 200
        assert _post(client, {**ORDER_CREATED, "total_amount": 600000}).status_code == 200

        _drain(send_task, test_session, queue)

        records = _records(db)
        assert len(records) == 2
        assert all(r.status == WebhookStatus.COMPLETED for r in records)
        [order] = db.scalars(select(Order)).all()
        assert order.total_amount == Decimal("6.00")

    def test_order_update_without_shop_id_resolved_through_order(self, client, db, shop_id, send_task, test_session, queue):
        _post(client, ORDER_CREATED)
        _drain(send_task, test_session, queue)

        resp = _post(client, {"event_type": "order.status_updated", "order_id": "991", "order_status": "SHIPPED"})

        assert resp.status_code == 200
        _drain(send_task, test_session, queue)
        db.expire_all()
        [order] = db.scalars(select(Order)).all()
        assert order.status == "SHIPPED"
        assert order.total_amount == Decimal("5.00")
        assert len(order.items) == 1

    def test_nested_shop_id(self, client, db, shop_id):
        resp = _post(client, {"event_type": "product.stock_updated", "data": {"shop_id": 5001, "item_id": "1", "stock": 2}})

        assert resp.status_code == 200
        assert len(_records(db)) == 1

    def test_enqueue_failure_still_acknowledged(self, client, db, shop_id, send_task):
        send_task.side_effect = ConnectionError("redis unavailable")

        resp = _post(client, ORDER_CREATED)

        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        [record] = _records(db)
        assert record.status == WebhookStatus.PENDING

    def test_storage_failure_still_acknowledged(self, client, shop_id):
        with patch("backend.api.webhook_routes.create_webhook_record", side_effect=RuntimeError("disk full")):
            resp = _post(client, ORDER_CREATED)

        assert resp.status_code == 200

    def test_unroutable_event_is_stored_but_not_queued(self, client, db, shop_id, send_task):
        resp = _post(client, {"event_type": "shop.updated", "shop_id": 5001})

        assert resp.status_code == 200
        assert len(_records(db)) == 1
        send_task.assert_not_called()

    def test_missing_event_type_defaults_to_order_unknown(self, client, db, shop_id, send_task):
        resp = _post(client, {"shop_id": 5001, "order_id": "5"})

        assert resp.status_code == 200
        [record] = _records(db)
        assert record.event_type == "order.unknown"
        assert send_task.call_args.kwargs["queue"] == ORDER_QUEUE

    def test_public_url_is_used_for_signing(self, client, db, shop_id):
        public = "https://hooks.example.com"
        settings = Settings(shopee_webhook_public_url=public + "/webhooks/shopee")
        with patch("backend.api.webhook_routes.get_settings", return_value=settings):
            resp = _post(client, ORDER_CREATED, base_url=public)

        assert resp.status_code == 200
        assert len(_records(db)) == 1
