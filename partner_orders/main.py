import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response

from partner_orders.config import settings
from partner_orders.db import PostgresOrderStore, close_pool, get_pool, init_schema
from partner_orders.errors import OrderLifecycleError
from partner_orders.lifecycle import OrderLifecycle
from partner_orders.metrics import get_metrics_bytes, get_metrics_content_type, sqs_queue_messages_in_flight, sqs_queue_messages_waiting
from partner_orders.notifications import QueueNotificationSender
from partner_orders.packing_slips import PackingSlipService
from partner_orders.redis_client import close_redis, get_redis
from partner_orders.routes import admin, orders
from partner_orders.sqs_client import get_queue_depth

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_redis()
    pool = await get_pool()
    await init_schema(pool)
    app.state.lifecycle = OrderLifecycle(
        store=PostgresOrderStore(pool),
        notifier=QueueNotificationSender(),
        packing_slips=PackingSlipService(),
    )
    yield
    await app.state.lifecycle.drain(timeout=settings.graceful_shutdown_wait_sec)
    await close_pool()
    await close_redis()


app = FastAPI(title="Partner Order Lifecycle", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(admin.router)
app.add_exception_handler(OrderLifecycleError, orders.lifecycle_error_response)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: transitions, side effect failures, notification queue depth (SQS)."""
    if settings.sqs_queue_url:
        try:
            waiting, in_flight = await get_queue_depth()
            sqs_queue_messages_waiting.set(waiting)
            sqs_queue_messages_in_flight.set(in_flight)
        except Exception as e:
            logger.warning("Could not read SQS queue depth: %s", e)
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
