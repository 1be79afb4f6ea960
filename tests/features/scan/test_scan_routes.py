"""
Tests for the scan HTTP endpoints. Celery dispatch and the result backend are mocked.
"""
import json

import pytest
from unittest.mock import MagicMock, patch

from app.features.scan.schemas.scan import ScanResult
from app.features.scan.services.analysis.baseline_scorer import compute_baseline
from app.platform.exceptions import ScanPipelineError

ROUTES = "app.features.scan.routes.scan"


def task_state(state, info=None, result=None) -> MagicMock:
    task = MagicMock()
    task.state = state
    task.info = info
    task.result = result
    return task


def finished_payload() -> dict:
    return ScanResult(**compute_baseline([]).model_dump(), pages_scanned=["https://shop.example.com/"]).model_dump()


class TestStartScan:
    def test_start_queues_the_pipeline(self, client):
        """Test that a valid request is queued with the job id as task id"""
        with patch(f"{ROUTES}.run_scan_pipeline") as mock_task:
            response = client.post("/api/v1/scan/start", json={"url": "shop.example.com", "platform": "shopify"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "queued"

        kwargs = mock_task.apply_async.call_args.kwargs
        job_id, payload = kwargs["args"]
        assert kwargs["task_id"] == job_id == data["job_id"]
        assert payload["url"] == "https://shop.example.com"
        assert payload["platform"] == "shopify"

    def test_invalid_url_is_rejected(self, client):
        """Test that an unusable URL is refused before queueing"""
        with patch(f"{ROUTES}.run_scan_pipeline") as mock_task:
            response = client.post("/api/v1/scan/start", json={"url": "ftp://shop.example.com"})

        assert response.status_code == 400
        assert response.json()["data"]["error_code"] == "INVALID_URL"
        mock_task.apply_async.assert_not_called()

    def test_missing_url_is_a_validation_error(self, client):
        """Test the validation envelope for a malformed body"""
        response = client.post("/api/v1/scan/start", json={"platform": "shopify"})

        assert response.status_code == 422
        assert response.json()["status"] == "error"


class TestScanStatus:
    def test_progress_state(self, client):
        """Test that worker progress is reported"""
        task = task_state("PROGRESS", info={"progress": 40, "step": "EXTRACT", "message": "6/12 pages fetched"})
        with patch(f"{ROUTES}.AsyncResult", return_value=task):
            response = client.get("/api/v1/scan/job-1")

        assert response.status_code == 200
        assert response.json()["data"] == {
            "job_id": "job-1", "status": "running", "progress": 40,
            "step": "EXTRACT", "message": "6/12 pages fetched",
        }

    def test_pending_state(self, client):
        """Test that an unknown or waiting job is queued"""
        with patch(f"{ROUTES}.AsyncResult", return_value=task_state("PENDING")):
            data = client.get("/api/v1/scan/job-1").json()["data"]

        assert data["status"] == "queued"
        assert data["progress"] == 0

    def test_failed_state(self, client):
        """Test that the error code of a failed scan is surfaced"""
        task = task_state("FAILURE", info=ScanPipelineError("INVALID_URL", "Invalid URL scheme"))
        with patch(f"{ROUTES}.AsyncResult", return_value=task):
            data = client.get("/api/v1/scan/job-1").json()["data"]

        assert data["status"] == "failed"
        assert data["step"] == "FAILED"
        assert data["message"] == "INVALID_URL: Invalid URL scheme"


class TestScanResult:
    def test_result_of_finished_scan(self, client):
        """Test the full result once the scan succeeded"""
        with patch(f"{ROUTES}.AsyncResult", return_value=task_state("SUCCESS", result=finished_payload())):
            response = client.get("/api/v1/scan/job-1/result")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["score"] == 50
        assert data["raw"]["ai"]["status"] == "skipped"

    def test_result_not_ready(self, client):
        """Test that an unfinished scan has no result yet"""
        with patch(f"{ROUTES}.AsyncResult", return_value=task_state("PROGRESS", info={})):
            response = client.get("/api/v1/scan/job-1/result")
        assert response.status_code == 404

    def test_preview_is_redacted(self, client):
        """Test that the preview exposes no raw diagnostics or fix steps"""
        with patch(f"{ROUTES}.AsyncResult", return_value=task_state("SUCCESS", result=finished_payload())):
            response = client.get("/api/v1/scan/job-1/preview")

        assert response.status_code == 200
        data = response.json()["data"]
        assert set(data) == {"score", "priority_action", "top_3_issues", "checklist", "confidence", "limitations"}
        assert len(data["checklist"]) == 3
        assert "AI summary unavailable" in data["limitations"]


class TestProgressStream:
    @pytest.mark.asyncio
    async def test_finished_job_closes_without_subscribing(self):
        """Test that a finished job gets its final status and a complete event only"""
        from app.features.scan.routes.sse import scan_progress_stream

        with patch(f"{ROUTES}.AsyncResult", return_value=task_state("SUCCESS", result=finished_payload())), \
                patch("app.features.scan.routes.sse.get_redis_pubsub") as mock_redis:
            events = [event async for event in scan_progress_stream("job-1")]

        assert [e["event"] for e in events] == ["progress", "complete"]
        assert json.loads(events[0]["data"])["progress"] == 100
        assert json.loads(events[1]["data"]) == {"job_id": "job-1", "status": "completed", "final": True}
        mock_redis.assert_not_called()
