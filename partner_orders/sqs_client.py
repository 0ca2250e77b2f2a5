"""
AWS SQS helpers for the notification queue. Used when SQS_QUEUE_URL is set;
otherwise notifications go through a Redis list.
"""
import asyncio
import json
from typing import Any

import boto3

from partner_orders.config import settings

_sqs_client: Any = None


def _get_client():
    global _sqs_client
    if _sqs_client is None:
        _sqs_client = boto3.client("sqs", region_name=settings.aws_region)
    return _sqs_client


async def send_message(body: dict, queue_url: str | None = None) -> None:
    """Send to the notification queue (boto3 runs in a thread so the loop is not blocked)."""
    client = _get_client()
    await asyncio.to_thread(
        client.send_message,
        QueueUrl=queue_url or settings.sqs_queue_url,
        MessageBody=json.dumps(body),
    )


def receive_messages(max_number: int = 10, wait_seconds: int = 5, queue_url: str | None = None) -> list[dict]:
    """Sync long-poll receive, called by the worker in a thread."""
    client = _get_client()
    resp = client.receive_message(
        QueueUrl=queue_url or settings.sqs_queue_url,
        MaxNumberOfMessages=max_number,
        WaitTimeSeconds=wait_seconds,
        AttributeNames=["ApproximateReceiveCount"],
    )
    return resp.get("Messages") or []


def delete_message(receipt_handle: str, queue_url: str | None = None) -> None:
    client = _get_client()
    client.delete_message(
        QueueUrl=queue_url or settings.sqs_queue_url,
        ReceiptHandle=receipt_handle,
    )


def change_message_visibility(receipt_handle: str, visibility_timeout: int) -> None:
    """Push the next delivery attempt out (backoff)."""
    client = _get_client()
    client.change_message_visibility(
        QueueUrl=settings.sqs_queue_url,
        ReceiptHandle=receipt_handle,
        VisibilityTimeout=visibility_timeout,
    )


async def get_queue_depth() -> tuple[int, int]:
    """Return (ApproximateNumberOfMessages, ApproximateNumberOfMessagesNotVisible) for metrics."""
    if not settings.sqs_queue_url:
        return 0, 0
    client = _get_client()

    def _get():
        r = client.get_queue_attributes(
            QueueUrl=settings.sqs_queue_url,
            AttributeNames=["ApproximateNumberOfMessages", "ApproximateNumberOfMessagesNotVisible"],
        )
        attrs = r.get("Attributes") or {}
        return (
            int(attrs.get("ApproximateNumberOfMessages", 0)),
            int(attrs.get("ApproximateNumberOfMessagesNotVisible", 0)),
        )

    return await asyncio.to_thread(_get)


async def replay_dlq_to_main(limit: int = 100) -> int:
    """
    Move undeliverable notifications from the DLQ back onto the main queue
    with a fresh attempt count. Malformed messages are dropped.
    Returns number of DLQ messages consumed.
    """
    if not settings.sqs_dlq_url or not settings.sqs_queue_url:
        return 0
    replayed = 0
    while replayed < limit:
        messages = await asyncio.to_thread(receive_messages, 10, 0, settings.sqs_dlq_url)
        if not messages:
            break
        for msg in messages[: limit - replayed]:
            receipt = msg.get("ReceiptHandle") or ""
            try:
                data = json.loads(msg.get("Body") or "{}")
            except json.JSONDecodeError:
                data = {}
            if data.get("order_id") and data.get("notification_type"):
                data["attempts"] = 0
                await send_message(data)
            await asyncio.to_thread(delete_message, receipt, settings.sqs_dlq_url)
            replayed += 1
    return replayed
