"""
SSE (Server-Sent Events) helper for publishing real-time progress updates via Redis pub/sub.

The scan worker hands `publish_scan_progress` to the orchestrator as its
progress sink; the SSE endpoint subscribes to the same channel and streams
every event to the client.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis

from app.platform.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None

TERMINAL_STATUSES = ("completed", "failed")


def progress_channel(job_id: str) -> str:
    return f"scan_progress:{job_id}"


def get_redis_client() -> redis.Redis:
    """
    Get or create a Redis client for pub/sub operations.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        redis_url = settings.CELERY_RESULT_BACKEND
        _redis_client = redis.from_url(redis_url, decode_responses=True)
        logger.info(f"Initialized Redis client for SSE: {redis_url}")

    return _redis_client


def publish_scan_progress(
    job_id: str,
    status: str,
    progress: int,
    message: str,
    **extra_data
) -> bool:
    """
    Publish a scan progress event to Redis for SSE streaming.

    Args:
        job_id: The scan job ID
        status: running, completed or failed
        progress: Progress percentage (0-100)
        message: Human-readable status message
        **extra_data: Additional fields (step, error_code, score, ...)

    Returns:
        True if published successfully, False otherwise. Progress is advisory,
        so a Redis outage never fails the scan itself.

    Example:
        publish_scan_progress(
            job_id="abc123",
            status="running",
            progress=25,
            message="Analyzing 12 pages",
            step="EXTRACT",
        )
    """
    try:
        redis_client = get_redis_client()

        event_data = {
            "job_id": job_id,
            "status": status,
            "progress": progress,
            "message": message,
            "timestamp": _get_current_timestamp(),
            **extra_data
        }

        channel = progress_channel(job_id)
        redis_client.publish(channel, json.dumps(event_data))

        logger.debug(f"Published SSE event to {channel}: {message} ({progress}%)")
        return True

    except Exception as e:
        logger.error(f"Failed to publish SSE event for job {job_id}: {e}", exc_info=True)
        return False


def _get_current_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def publish_scan_error(job_id: str, error_code: str, error_message: str) -> bool:
    """Publish the terminal event for a scan that could not produce a result."""
    return publish_scan_progress(
        job_id=job_id,
        status="failed",
        progress=100,
        message=f"Scan failed: {error_message}",
        step="FAILED",
        error_code=error_code,
    )


def publish_scan_completion(job_id: str, score: int, confidence: str, ai_status: str) -> bool:
    """Publish the terminal event for a scan that produced a result."""
    return publish_scan_progress(
        job_id=job_id,
        status="completed",
        progress=100,
        message=f"Scan completed! Score: {score}/100",
        step="DONE",
        score=score,
        confidence=confidence,
        ai_status=ai_status,
    )
