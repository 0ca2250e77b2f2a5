"""
Notification worker: pull order notifications from Redis or AWS SQS and hand
them to the email service.
- Redis: exponential backoff + manual DLQ. SQS: don't delete on failure; SQS redrive to DLQ after max receives.
- Prometheus /metrics on port 9090 (worker metrics).
- Graceful shutdown on SIGTERM.
Run: python -m partner_orders.worker
"""
import asyncio
import json
import logging
import signal
import sys
import threading
import time

import httpx
import redis.asyncio as redis

from partner_orders.config import settings
from partner_orders.metrics import notifications_delivered_total, notifications_dlq_total, notifications_failed_total
from partner_orders.notifications import NOTIFICATION_DLQ_KEY, NOTIFICATION_QUEUE_KEY
from partner_orders.sqs_client import change_message_visibility, delete_message, receive_messages

logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5
WORKER_METRICS_PORT = 9090


def _start_metrics_server() -> None:
    from prometheus_client import start_http_server
    start_http_server(WORKER_METRICS_PORT)


async def deliver(client: httpx.AsyncClient, data: dict) -> None:
    """POST one notification to the email service. Raises on transport errors and non-2xx."""
    resp = await client.post(
        settings.email_service_url,
        json={
            "orderId": data["order_id"],
            "emailType": data["notification_type"],
            "customMessage": data.get("custom_message"),
        },
    )
    resp.raise_for_status()


def _parse(raw: str) -> dict | None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON from queue: %s", e)
        return None
    if not data.get("order_id") or not data.get("notification_type"):
        logger.warning("Message missing order_id or notification_type, skipping")
        return None
    return data


async def process_one_redis(
    r: redis.Redis,
    client: httpx.AsyncClient,
    raw: str,
    sem: asyncio.Semaphore,
) -> None:
    data = _parse(raw)
    if data is None:
        return
    notification_id = data.get("notification_id")
    attempts = data.get("attempts", 0)

    async with sem:
        try:
            await deliver(client, data)
            logger.info(
                "Delivered %s notification %s for order_id=%s",
                data["notification_type"],
                notification_id,
                data["order_id"],
            )
            notifications_delivered_total.inc()
        except Exception as e:
            notifications_failed_total.inc()
            logger.exception("Failed to deliver notification %s (attempt %d): %s", notification_id, attempts + 1, e)
            next_attempts = attempts + 1
            if next_attempts >= settings.worker_max_retries:
                dlq_message = json.dumps({
                    **data,
                    "attempts": next_attempts,
                    "last_error": str(e),
                    "failed_at": time.time(),
                })
                await r.lpush(NOTIFICATION_DLQ_KEY, dlq_message)
                notifications_dlq_total.inc()
                logger.warning(
                    "Moved notification %s to DLQ after %d attempts",
                    notification_id,
                    settings.worker_max_retries,
                )
            else:
                backoff_sec = 2 ** attempts
                logger.info(
                    "Re-queuing notification %s in %ds (attempt %d/%d)",
                    notification_id,
                    backoff_sec,
                    next_attempts,
                    settings.worker_max_retries,
                )
                await asyncio.sleep(backoff_sec)
                await r.lpush(NOTIFICATION_QUEUE_KEY, json.dumps({**data, "attempts": next_attempts}))


async def process_one_sqs(
    client: httpx.AsyncClient,
    body: str,
    receipt_handle: str,
    receive_count: int,
    sem: asyncio.Semaphore,
) -> None:
    data = _parse(body)
    if data is None:
        await asyncio.to_thread(delete_message, receipt_handle)
        return

    async with sem:
        try:
            await deliver(client, data)
            logger.info("Delivered notification %s for order_id=%s", data.get("notification_id"), data["order_id"])
            notifications_delivered_total.inc()
            await asyncio.to_thread(delete_message, receipt_handle)
        except Exception as e:
            notifications_failed_total.inc()
            logger.exception(
                "Failed to deliver notification %s (receive #%d): %s",
                data.get("notification_id"),
                receive_count,
                e,
            )
            # Left undeleted: reappears after the visibility timeout; SQS redrives to the DLQ after max receives
            backoff = min(2 ** receive_count, 900)
            await asyncio.to_thread(change_message_visibility, receipt_handle, backoff)


async def _wait_for_tasks(tasks: set[asyncio.Task]) -> None:
    if not tasks:
        return
    logger.info(
        "Graceful shutdown: waiting for %d in-flight delivery(ies) (max %ds) ...",
        len(tasks),
        settings.graceful_shutdown_wait_sec,
    )
    _, pending = await asyncio.wait(
        tasks,
        timeout=settings.graceful_shutdown_wait_sec,
        return_when=asyncio.ALL_COMPLETED,
    )
    for t in pending:
        t.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def run_worker_redis(shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Backend=Redis. Listening on %s (concurrency=%d, max_retries=%d) ...",
        NOTIFICATION_QUEUE_KEY,
        settings.worker_concurrency,
        settings.worker_max_retries,
    )
    r = redis.from_url(settings.redis_url, decode_responses=True)
    client = httpx.AsyncClient(timeout=settings.email_service_timeout_sec)
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            result = await r.brpop(NOTIFICATION_QUEUE_KEY, timeout=BRPOP_TIMEOUT)
            if result is None:
                continue
            _key, raw = result
            t = asyncio.create_task(process_one_redis(r, client, raw, sem))
            tasks.add(t)
            t.add_done_callback(tasks.discard)
    finally:
        await _wait_for_tasks(tasks)
        await client.aclose()
        await r.aclose()
        logger.info("Worker stopped.")


async def run_worker_sqs(shutdown_event: asyncio.Event) -> None:
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Backend=SQS. Queue=%s (concurrency=%d) ...",
        settings.sqs_queue_url,
        settings.worker_concurrency,
    )
    client = httpx.AsyncClient(timeout=settings.email_service_timeout_sec)
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            messages = await asyncio.to_thread(receive_messages, 10, 5)
            for msg in messages:
                body = msg.get("Body") or "{}"
                receipt = msg.get("ReceiptHandle") or ""
                attrs = msg.get("Attributes") or {}
                receive_count = int(attrs.get("ApproximateReceiveCount", 1))
                t = asyncio.create_task(process_one_sqs(client, body, receipt, receive_count, sem))
                tasks.add(t)
                t.add_done_callback(tasks.discard)
    finally:
        await _wait_for_tasks(tasks)
        await client.aclose()
        logger.info("Worker stopped.")


async def run_worker(shutdown_event: asyncio.Event) -> None:
    if settings.sqs_queue_url:
        await run_worker_sqs(shutdown_event)
    else:
        await run_worker_redis(shutdown_event)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stdout,
    )
    threading.Thread(target=_start_metrics_server, daemon=True).start()
    logger.info("Metrics server listening on port %s", WORKER_METRICS_PORT)

    shutdown_event = asyncio.Event()

    def on_signal():
        shutdown_event.set()

    loop = asyncio.new_event_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, on_signal)
    except NotImplementedError:
        signal.signal(signal.SIGTERM, lambda *a: shutdown_event.set())
        signal.signal(signal.SIGINT, lambda *a: shutdown_event.set())

    asyncio.set_event_loop(loop)
    try:
        loop.run_until_complete(run_worker(shutdown_event))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
