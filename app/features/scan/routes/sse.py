"""
SSE (Server-Sent Events) endpoint for real-time scan progress updates.

The worker publishes every progress event on the job's Redis channel; this
endpoint relays them to the client until the scan completes or fails.
"""
import asyncio
import json
from typing import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from app.features.scan.routes.scan import get_job_status
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.services.sse_helper import TERMINAL_STATUSES, progress_channel

logger = get_logger(__name__)

router = APIRouter(prefix="/scan", tags=["scan"])

STREAM_TIMEOUT_SECONDS = 300
HEARTBEAT_SECONDS = 30.0


async def get_redis_pubsub():
    """
    Create an async Redis client for SSE.

    Returns:
        Async Redis client
    """
    return aioredis.from_url(settings.CELERY_RESULT_BACKEND, decode_responses=True)


def _complete_event(job_id: str, job_status: str) -> dict:
    return {
        "event": "complete",
        "data": json.dumps({"job_id": job_id, "status": job_status, "final": True}),
    }


def _heartbeat_event() -> dict:
    return {
        "event": "heartbeat",
        "data": json.dumps({"timestamp": asyncio.get_event_loop().time()}),
    }


async def scan_progress_stream(job_id: str) -> AsyncGenerator[dict, None]:
    """
    Stream scan progress events for a specific job.

    Sends the current status first, then relays live events from Redis.
    Closes after a terminal event, or after five minutes.
    """
    current = get_job_status(job_id)
    yield {
        "event": "progress",
        "data": json.dumps({
            "job_id": job_id,
            "status": current.status,
            "progress": current.progress,
            "step": current.step,
            "message": current.message,
        }),
    }

    # Already finished: nothing more will be published
    if current.status in TERMINAL_STATUSES:
        yield _complete_event(job_id, current.status)
        return

    redis_client = await get_redis_pubsub()
    pubsub = redis_client.pubsub()
    channel = progress_channel(job_id)

    try:
        await pubsub.subscribe(channel)
        logger.info(f"SSE: Subscribed to {channel}")

        start_time = asyncio.get_event_loop().time()

        while True:
            if asyncio.get_event_loop().time() - start_time > STREAM_TIMEOUT_SECONDS:
                logger.info(f"SSE: Connection timeout for job {job_id}")
                yield {
                    "event": "timeout",
                    "data": json.dumps({"message": "Connection timeout"}),
                }
                break

            try:
                message = await asyncio.wait_for(
                    pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0),
                    timeout=HEARTBEAT_SECONDS,
                )
            except asyncio.TimeoutError:
                yield _heartbeat_event()
                continue

            if not message or message["type"] != "message":
                continue

            event_data = json.loads(message["data"])
            yield {"event": "progress", "data": json.dumps(event_data)}

            event_status = event_data.get("status")
            if event_status in TERMINAL_STATUSES:
                yield _complete_event(job_id, event_status)
                break

    except Exception as e:
        logger.error(f"SSE: Error streaming for job {job_id}: {e}", exc_info=True)
        yield {
            "event": "error",
            "data": json.dumps({"error": str(e)}),
        }
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
        await redis_client.aclose()
        logger.info(f"SSE: Closed connection for job {job_id}")


@router.get(
    "/{job_id}/stream",
    summary="Stream scan progress (SSE)",
    description="""
    Stream real-time scan progress updates using Server-Sent Events (SSE).

    **Event Types:**
    - `progress`: percent, step (FETCH_HOME, DISCOVER_PAGES, EXTRACT, SCORE, AI_SUMMARY, DONE, FAILED) and message
    - `complete`: Scan completed or failed (connection will close)
    - `heartbeat`: Keep-alive ping (sent every 30 seconds)
    - `timeout`: Connection timeout (after 5 minutes)
    - `error`: Error occurred

    **Progress Event Data:**
    ```json
    {
        "job_id": "abc123",
        "status": "running",
        "progress": 40,
        "step": "EXTRACT",
        "message": "6/12 pages fetched"
    }
    ```
    """
)
async def stream_scan_progress(job_id: str):
    logger.info(f"SSE: Client connected for job {job_id}")

    return EventSourceResponse(
        scan_progress_stream(job_id),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )
