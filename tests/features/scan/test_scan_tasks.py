import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from app.features.scan.schemas.scan import ScanResult
from app.features.scan.services.analysis.baseline_scorer import compute_baseline
from app.features.scan.workers.tasks import build_progress_sink, run_scan_pipeline
from app.platform.exceptions import ScanPipelineError

TASKS = "app.features.scan.workers.tasks"


def finished_result() -> ScanResult:
    return ScanResult(**compute_baseline([]).model_dump(), pages_scanned=["https://shop.example.com/"])


class TestProgressSink:
    def test_running_events_are_published_and_recorded(self):
        """Test that a running event reaches Redis and the task state"""
        task = MagicMock()
        with patch(f"{TASKS}.publish_scan_progress") as mock_publish:
            build_progress_sink(task, "job-1")(40, "EXTRACT", "6/12 pages fetched")

        mock_publish.assert_called_once_with(
            job_id="job-1", status="running", progress=40, message="6/12 pages fetched", step="EXTRACT",
        )
        task.update_state.assert_called_once_with(
            task_id="job-1",
            state="PROGRESS",
            meta={"progress": 40, "step": "EXTRACT", "message": "6/12 pages fetched"},
        )

    def test_terminal_events_are_left_to_the_task(self):
        """Test that DONE and FAILED are not published by the sink"""
        task = MagicMock()
        with patch(f"{TASKS}.publish_scan_progress") as mock_publish:
            sink = build_progress_sink(task, "job-1")
            sink(100, "DONE", "done")
            sink(100, "FAILED", "failed")

        mock_publish.assert_not_called()
        task.update_state.assert_not_called()


class TestRunScanPipeline:
    def test_success_publishes_completion(self):
        """Test the happy path: result returned as a dict and completion published"""
        orchestrator = MagicMock()
        orchestrator.run = AsyncMock(return_value=finished_result())

        with patch(f"{TASKS}.ScanOrchestrator", return_value=orchestrator), \
                patch(f"{TASKS}.publish_scan_completion") as mock_completion, \
                patch(f"{TASKS}.publish_scan_error") as mock_error:
            output = run_scan_pipeline("job-1", {"url": "https://shop.example.com"})

        assert output["score"] == 50
        assert output["pages_scanned"] == ["https://shop.example.com/"]
        mock_completion.assert_called_once_with("job-1", score=50, confidence="low", ai_status="skipped")
        mock_error.assert_not_called()
        assert orchestrator.run.await_args.kwargs["job_id"] == "job-1"

    def test_invalid_payload(self):
        """Test that a payload without a URL is rejected before any work"""
        with patch(f"{TASKS}.ScanOrchestrator") as mock_orchestrator, \
                patch(f"{TASKS}.publish_scan_error") as mock_error:
            with pytest.raises(ScanPipelineError) as exc_info:
                run_scan_pipeline("job-2", {"platform": "shopify"})

        assert exc_info.value.code == "INVALID_REQUEST"
        mock_error.assert_called_once()
        mock_orchestrator.assert_not_called()

    def test_pipeline_error_is_published_and_raised(self):
        """Test that a rejected scan publishes its error code"""
        orchestrator = MagicMock()
        orchestrator.run = AsyncMock(side_effect=ScanPipelineError("INVALID_URL", "Invalid URL scheme"))

        with patch(f"{TASKS}.ScanOrchestrator", return_value=orchestrator), \
                patch(f"{TASKS}.publish_scan_error") as mock_error:
            with pytest.raises(ScanPipelineError):
                run_scan_pipeline("job-3", {"url": "ftp://shop.example.com"})

        mock_error.assert_called_once_with("job-3", "INVALID_URL", "Invalid URL scheme")
