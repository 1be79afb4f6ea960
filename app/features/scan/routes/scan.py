import uuid
from typing import Optional

from celery.result import AsyncResult
from fastapi import APIRouter, status

from app.features.scan.schemas.scan import (
    ScanRequest,
    ScanResult,
    ScanStartResponse,
    ScanStatusResponse,
)
from app.features.scan.services.orchestration.preview import build_scan_preview
from app.features.scan.workers.tasks import run_scan_pipeline
from app.platform.celery_app import celery_app
from app.platform.exceptions import ScanPipelineError
from app.platform.logger import get_logger
from app.platform.response import api_response
from app.platform.utils.url_validator import validate_url

logger = get_logger(__name__)

router = APIRouter(prefix="/scan", tags=["scan"])

# Celery task state -> public job status
JOB_STATUSES = {
    "PENDING": "queued",
    "RECEIVED": "queued",
    "STARTED": "running",
    "PROGRESS": "running",
    "RETRY": "running",
    "SUCCESS": "completed",
    "FAILURE": "failed",
    "REVOKED": "failed",
}


def _get_task(job_id: str) -> AsyncResult:
    return AsyncResult(job_id, app=celery_app)


def get_job_status(job_id: str) -> ScanStatusResponse:
    task = _get_task(job_id)
    job_status = JOB_STATUSES.get(task.state, "running")
    response = ScanStatusResponse(job_id=job_id, status=job_status)

    if task.state == "PROGRESS" and isinstance(task.info, dict):
        response.progress = int(task.info.get("progress", 0))
        response.step = task.info.get("step")
        response.message = task.info.get("message")
    elif job_status == "completed":
        response.progress = 100
        response.step = "DONE"
        response.message = "Scan completed"
    elif job_status == "failed":
        response.progress = 100
        response.step = "FAILED"
        error = task.info
        if isinstance(error, ScanPipelineError):
            response.message = f"{error.code}: {error.message}"
        else:
            response.message = str(error) if error else "Scan failed"
    elif job_status == "queued":
        response.message = "Waiting for a worker"
    return response


def _finished_result(job_id: str) -> Optional[ScanResult]:
    task = _get_task(job_id)
    if task.state != "SUCCESS":
        return None
    return ScanResult.model_validate(task.result)


@router.post("/start", response_model=ScanStartResponse)
async def start_scan(data: ScanRequest):
    """
    Queue a storefront scan.

    The scan runs on a Celery worker and returns immediately. Follow it with
    GET /scan/{job_id}/stream (SSE) or by polling GET /scan/{job_id}.
    """
    is_valid, url_str, error_message = validate_url(data.url)
    if not is_valid:
        return api_response(
            status_code=status.HTTP_400_BAD_REQUEST,
            message=f"Invalid URL: {error_message}",
            data={"error_code": "INVALID_URL"},
        )

    job_id = str(uuid.uuid4())
    payload = data.model_copy(update={"url": url_str}).model_dump()
    run_scan_pipeline.apply_async(args=[job_id, payload], task_id=job_id)
    logger.info(f"Queued scan job {job_id} for {url_str}")

    return api_response(
        data=ScanStartResponse(
            job_id=job_id,
            status="queued",
            message=f"Scan queued successfully. Stream GET /scan/{job_id}/stream for progress.",
        )
    )


@router.get("/{job_id}", response_model=ScanStatusResponse)
async def get_scan_status(job_id: str):
    """Current status and last reported progress of a scan job."""
    return api_response(data=get_job_status(job_id))


@router.get("/{job_id}/result", response_model=ScanResult)
async def get_scan_result(job_id: str):
    result = _finished_result(job_id)
    if result is None:
        return api_response(
            status_code=status.HTTP_404_NOT_FOUND,
            message=f"No finished result for scan {job_id}",
        )
    return api_response(data=result)


@router.get("/{job_id}/preview")
async def get_scan_preview(job_id: str):
    """Redacted result: score, priority action, top issues and checklist only."""
    result = _finished_result(job_id)
    if result is None:
        return api_response(
            status_code=status.HTTP_404_NOT_FOUND,
            message=f"No finished result for scan {job_id}",
        )
    return api_response(data=build_scan_preview(result))
