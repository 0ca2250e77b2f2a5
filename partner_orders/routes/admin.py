from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from partner_orders.config import settings
from partner_orders.notifications import replay_redis_dlq
from partner_orders.sqs_client import replay_dlq_to_main

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/dlq/replay")
async def dlq_replay(limit: int = Query(default=100, ge=1, le=1000)) -> JSONResponse:
    """
    Put undelivered notifications back on the queue: the SQS DLQ when SQS is
    configured, the Redis DLQ list otherwise.
    """
    if settings.sqs_queue_url:
        backend, replayed = "sqs", await replay_dlq_to_main(limit=limit)
    else:
        backend, replayed = "redis", await replay_redis_dlq(limit=limit)
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "backend": backend, "replayed": replayed},
    )
