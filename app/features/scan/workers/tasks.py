import asyncio
import logging
from typing import Any, Dict

from pydantic import ValidationError

from app.features.scan.schemas.scan import ScanRequest
from app.features.scan.services.orchestration.scan_orchestrator import (
    TERMINAL_STEPS,
    ScanOrchestrator,
)
from app.platform.celery_app import celery_app
from app.platform.exceptions import ScanPipelineError
from app.platform.services.sse_helper import (
    publish_scan_completion,
    publish_scan_error,
    publish_scan_progress,
)

logger = logging.getLogger(__name__)

TERMINAL_STEP_NAMES = {step.value for step in TERMINAL_STEPS}


def build_progress_sink(task, job_id: str):
    """
    Progress sink for one scan job.

    Running events go to the SSE channel and to the Celery result backend
    (state PROGRESS) so that both the stream and the status endpoint see
    them. Terminal events are published by the task itself once it holds
    the final result.
    """

    def sink(percent: int, step: str, message: str) -> None:
        if step in TERMINAL_STEP_NAMES:
            return
        publish_scan_progress(
            job_id=job_id,
            status="running",
            progress=percent,
            message=message,
            step=step,
        )
        try:
            task.update_state(
                task_id=job_id,
                state="PROGRESS",
                meta={"progress": percent, "step": step, "message": message},
            )
        except Exception as e:
            logger.warning(f"[{job_id}] Could not record progress state: {e}")

    return sink


# =============================================================================
# Pipeline
# =============================================================================

@celery_app.task(
    bind=True,
    name="app.features.scan.workers.tasks.run_scan_pipeline"
)
def run_scan_pipeline(self, job_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run one storefront scan end to end.

    Args:
        job_id: The scan job ID (also the Celery task id)
        payload: ScanRequest as a plain dict

    Returns:
        The ScanResult as a plain dict, stored in the result backend
    """
    try:
        request = ScanRequest.model_validate(payload)
    except ValidationError as e:
        logger.error(f"[{job_id}] Invalid scan payload: {e}")
        publish_scan_error(job_id, "INVALID_REQUEST", "invalid scan request")
        raise ScanPipelineError("INVALID_REQUEST", str(e)) from e

    logger.info(f"[{job_id}] Starting scan pipeline for {request.url}")
    orchestrator = ScanOrchestrator()

    try:
        result = asyncio.run(
            orchestrator.run(request, sink=build_progress_sink(self, job_id), job_id=job_id)
        )
    except ScanPipelineError as e:
        logger.error(f"[{job_id}] Scan rejected: {e.code} {e.message}")
        publish_scan_error(job_id, e.code, e.message)
        raise
    except Exception as e:
        logger.exception(f"[{job_id}] Scan crashed")
        publish_scan_error(job_id, "SCAN_INTERNAL_ERROR", str(e))
        raise

    publish_scan_completion(
        job_id,
        score=result.score,
        confidence=result.confidence,
        ai_status=result.raw.ai.status,
    )
    logger.info(
        f"[{job_id}] Scan completed: score={result.score} confidence={result.confidence} "
        f"pages={len(result.pages_scanned)} ai={result.raw.ai.status}"
    )
    return result.model_dump()
