from app.features.scan.schemas.scan import AIStatus, Issue, RawDiagnostics, ScanResult
from app.features.scan.services.analysis.baseline_scorer import compute_baseline
from app.features.scan.services.orchestration.preview import (
    AI_UNAVAILABLE_LIMITATION,
    URL_ONLY_LIMITATION,
    build_scan_preview,
)


def scan_result(mode="rendered", ai_status="ok", limitations=None) -> ScanResult:
    baseline = compute_baseline([])
    data = baseline.model_dump()
    data["issues"] = [
        Issue(id=f"i{n}", title=f"Issue {n}", why="secret reasoning", fix_steps=["step"], impact="high").model_dump()
        for n in range(5)
    ]
    return ScanResult(
        **data,
        confidence="medium",
        limitations=limitations or [],
        raw=RawDiagnostics(mode=mode, ai=AIStatus(enabled=True, status=ai_status)),
    )


class TestBuildScanPreview:
    def test_redacts_the_result(self):
        """Test that only titles and impacts of the first three issues are exposed"""
        preview = build_scan_preview(scan_result())

        assert preview.score == 50
        assert [i.model_dump() for i in preview.top_3_issues] == [
            {"title": "Issue 0", "impact": "high"},
            {"title": "Issue 1", "impact": "high"},
            {"title": "Issue 2", "impact": "high"},
        ]
        assert len(preview.checklist) == 3
        assert len(preview.priority_action.steps) <= 3
        assert preview.confidence == "medium"
        assert preview.limitations is None

        dumped = preview.model_dump()
        assert "raw" not in dumped
        assert "secret reasoning" not in str(dumped)

    def test_limitations_for_degraded_scans(self):
        """Test the limitations added for plain fetches and missing AI"""
        preview = build_scan_preview(scan_result(mode="plain", ai_status="failed", limitations=["No checkout"]))
        assert preview.limitations == ["No checkout", URL_ONLY_LIMITATION, AI_UNAVAILABLE_LIMITATION]

    def test_does_not_repeat_limitations(self):
        """Test that an existing limitation is not added twice"""
        preview = build_scan_preview(scan_result(ai_status="skipped", limitations=[AI_UNAVAILABLE_LIMITATION]))
        assert preview.limitations == [AI_UNAVAILABLE_LIMITATION]
