import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from partner_orders.models import NotificationType
from partner_orders.notifications import NOTIFICATION_DLQ_KEY, NOTIFICATION_QUEUE_KEY, make_body
from partner_orders.worker import deliver, process_one_redis


def email_client(status_code: int, seen: list) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(status_code, json={})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def raw_message(attempts: int = 0) -> str:
    return json.dumps(make_body("ord-1", NotificationType.READY, attempts=attempts, notification_id="n-1"))


@pytest.mark.asyncio
async def test_deliver_posts_the_email_payload():
    seen = []
    async with email_client(200, seen) as client:
        await deliver(client, make_body("ord-1", NotificationType.CUSTOM, "Truck arrives at 9"))
    assert seen == [{"orderId": "ord-1", "emailType": "custom", "customMessage": "Truck arrives at 9"}]


@pytest.mark.asyncio
async def test_deliver_raises_on_error_status():
    async with email_client(500, []) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await deliver(client, make_body("ord-1", NotificationType.READY))


@pytest.mark.asyncio
async def test_delivered_message_is_not_requeued():
    r = AsyncMock()
    async with email_client(200, []) as client:
        await process_one_redis(r, client, raw_message(), asyncio.Semaphore(1))
    r.lpush.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_delivery_is_requeued_with_backoff():
    r = AsyncMock()
    with patch("partner_orders.worker.asyncio.sleep", AsyncMock()) as sleep:
        async with email_client(503, []) as client:
            await process_one_redis(r, client, raw_message(attempts=2), asyncio.Semaphore(1))

    sleep.assert_awaited_once_with(4)
    key, payload = r.lpush.await_args.args
    assert key == NOTIFICATION_QUEUE_KEY
    assert json.loads(payload)["attempts"] == 3


@pytest.mark.asyncio
async def test_last_attempt_goes_to_dlq():
    r = AsyncMock()
    with patch("partner_orders.worker.settings.worker_max_retries", 3):
        async with email_client(503, []) as client:
            await process_one_redis(r, client, raw_message(attempts=2), asyncio.Semaphore(1))

    key, payload = r.lpush.await_args.args
    assert key == NOTIFICATION_DLQ_KEY
    data = json.loads(payload)
    assert data["attempts"] == 3
    assert data["order_id"] == "ord-1"
    assert "last_error" in data


@pytest.mark.asyncio
async def test_malformed_messages_are_dropped():
    r = AsyncMock()
    async with email_client(200, []) as client:
        await process_one_redis(r, client, "not json", asyncio.Semaphore(1))
        await process_one_redis(r, client, json.dumps({"order_id": "ord-1"}), asyncio.Semaphore(1))
    r.lpush.assert_not_awaited()
