"""
Push order notifications to the delivery queue. Backend: Redis (LPUSH) or
AWS SQS when SQS_QUEUE_URL is set. The worker delivers them.
"""
import json
import logging
import uuid

from partner_orders.config import settings
from partner_orders.metrics import notifications_enqueued_total
from partner_orders.models import NotificationType
from partner_orders.redis_client import get_redis
from partner_orders.sqs_client import send_message

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUE_KEY = "queue:order_notifications"
NOTIFICATION_DLQ_KEY = "queue:order_notifications:dlq"


def make_body(
    order_id: str,
    notification_type: NotificationType,
    custom_message: str | None = None,
    attempts: int = 0,
    notification_id: str | None = None,
) -> dict:
    return {
        "notification_id": notification_id or uuid.uuid4().hex,
        "order_id": order_id,
        "notification_type": notification_type.value,
        "custom_message": custom_message,
        "attempts": attempts,
    }


async def push_to_queue(body: dict) -> None:
    if settings.sqs_queue_url:
        await send_message(body)
    else:
        r = await get_redis()
        await r.lpush(NOTIFICATION_QUEUE_KEY, json.dumps(body))


class QueueNotificationSender:
    async def send(
        self,
        order_id: str,
        notification_type: NotificationType,
        custom_message: str | None = None,
    ) -> bool:
        """Enqueue a notification. Returns False instead of raising when the queue is unreachable."""
        body = make_body(order_id, notification_type, custom_message)
        try:
            await push_to_queue(body)
        except Exception as e:
            logger.warning(
                "Could not enqueue %s notification for order_id=%s: %s",
                notification_type.value,
                order_id,
                e,
            )
            return False
        notifications_enqueued_total.labels(notification_type=notification_type.value).inc()
        logger.info(
            "Enqueued %s notification %s for order_id=%s",
            notification_type.value,
            body["notification_id"],
            order_id,
        )
        return True


async def replay_redis_dlq(limit: int = 100) -> int:
    """
    Move notifications from the Redis DLQ back onto the main queue with a
    fresh attempt count, oldest first. Malformed entries are dropped.
    Returns number of DLQ entries consumed.
    """
    r = await get_redis()
    replayed = 0
    while replayed < limit:
        raw = await r.rpop(NOTIFICATION_DLQ_KEY)
        if raw is None:
            break
        replayed += 1
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Dropping malformed DLQ entry: %r", raw)
            continue
        if not data.get("order_id") or not data.get("notification_type"):
            logger.warning("Dropping DLQ entry without order_id or notification_type")
            continue
        body = make_body(
            data["order_id"],
            NotificationType(data["notification_type"]),
            data.get("custom_message"),
            notification_id=data.get("notification_id"),
        )
        await r.lpush(NOTIFICATION_QUEUE_KEY, json.dumps(body))
    if replayed:
        logger.info("Replayed %d notification(s) from %s", replayed, NOTIFICATION_DLQ_KEY)
    return replayed
