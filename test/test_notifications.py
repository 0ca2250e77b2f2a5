import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from partner_orders.models import NotificationType
from partner_orders.notifications import NOTIFICATION_QUEUE_KEY, QueueNotificationSender, replay_redis_dlq
from partner_orders.routes import admin


@pytest.mark.asyncio
async def test_send_pushes_to_redis_queue():
    r = AsyncMock()
    with patch("partner_orders.notifications.settings.sqs_queue_url", None), patch(
        "partner_orders.notifications.get_redis", AsyncMock(return_value=r)
    ):
        sent = await QueueNotificationSender().send("ord-1", NotificationType.STATUS_CHANGE, "Order status changed")

    assert sent is True
    key, payload = r.lpush.await_args.args
    assert key == NOTIFICATION_QUEUE_KEY
    body = json.loads(payload)
    assert body["order_id"] == "ord-1"
    assert body["notification_type"] == "status_change"
    assert body["custom_message"] == "Order status changed"
    assert body["attempts"] == 0


@pytest.mark.asyncio
async def test_send_uses_sqs_when_configured():
    send = AsyncMock()
    with patch("partner_orders.notifications.settings.sqs_queue_url", "https://sqs.example/queue"), patch(
        "partner_orders.notifications.send_message", send
    ):
        assert await QueueNotificationSender().send("ord-1", NotificationType.READY) is True
    assert send.await_args.args[0]["notification_type"] == "ready"


@pytest.mark.asyncio
async def test_unreachable_queue_returns_false():
    r = AsyncMock()
    r.lpush.side_effect = ConnectionError("redis down")
    with patch("partner_orders.notifications.settings.sqs_queue_url", None), patch(
        "partner_orders.notifications.get_redis", AsyncMock(return_value=r)
    ):
        assert await QueueNotificationSender().send("ord-1", NotificationType.CANCELLED) is False


@pytest.mark.asyncio
async def test_replay_redis_dlq_resets_attempts_and_drops_garbage():
    dead = json.dumps({
        "notification_id": "n-1",
        "order_id": "ord-1",
        "notification_type": "ready",
        "custom_message": None,
        "attempts": 5,
        "last_error": "503",
    })
    r = AsyncMock()
    r.rpop.side_effect = [dead, "not json", json.dumps({"order_id": "ord-2"}), None]
    with patch("partner_orders.notifications.get_redis", AsyncMock(return_value=r)):
        assert await replay_redis_dlq(limit=10) == 3

    key, payload = r.lpush.await_args.args
    assert r.lpush.await_count == 1
    assert key == NOTIFICATION_QUEUE_KEY
    body = json.loads(payload)
    assert body["notification_id"] == "n-1"
    assert body["attempts"] == 0
    assert "last_error" not in body


@pytest.mark.asyncio
async def test_replay_redis_dlq_stops_at_limit():
    r = AsyncMock()
    r.rpop.return_value = json.dumps({"order_id": "ord-1", "notification_type": "cancelled"})
    with patch("partner_orders.notifications.get_redis", AsyncMock(return_value=r)):
        assert await replay_redis_dlq(limit=2) == 2
    assert r.lpush.await_count == 2


def test_admin_replay_uses_redis_without_sqs():
    app = FastAPI()
    app.include_router(admin.router)
    with patch("partner_orders.routes.admin.settings.sqs_queue_url", None), patch(
        "partner_orders.routes.admin.replay_redis_dlq", AsyncMock(return_value=4)
    ) as replay:
        r = TestClient(app).post("/admin/dlq/replay?limit=50")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "backend": "redis", "replayed": 4}
    replay.assert_awaited_once_with(limit=50)
