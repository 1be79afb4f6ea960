from app.features.scan.schemas.scan import (
    PreviewIssue,
    PriorityAction,
    ScanPreview,
    ScanResult,
)

PREVIEW_STEPS = 3
PREVIEW_ISSUES = 3
PREVIEW_CHECKLIST = 3

URL_ONLY_LIMITATION = "URL-only scan (no JavaScript rendering)"
AI_UNAVAILABLE_LIMITATION = "AI summary unavailable"


def build_scan_preview(result: ScanResult) -> ScanPreview:
    """
    Redacted view of a finished scan for viewers without the full report.

    Keeps the score, a shortened priority action, the titles of the first
    three issues and the first three checklist items. Fix steps, explanations
    and raw diagnostics are never included.
    """
    limitations = list(result.limitations)
    if result.raw.mode == "plain" and URL_ONLY_LIMITATION not in limitations:
        limitations.append(URL_ONLY_LIMITATION)
    if result.raw.ai.status != "ok" and AI_UNAVAILABLE_LIMITATION not in limitations:
        limitations.append(AI_UNAVAILABLE_LIMITATION)

    action = result.priority_action
    return ScanPreview(
        score=result.score,
        priority_action=PriorityAction(
            title=action.title,
            steps=action.steps[:PREVIEW_STEPS],
            time_minutes=action.time_minutes,
            expected_impact=action.expected_impact,
        ),
        top_3_issues=[
            PreviewIssue(title=issue.title, impact=issue.impact)
            for issue in result.issues[:PREVIEW_ISSUES]
        ],
        checklist=[item.model_copy() for item in result.checklist[:PREVIEW_CHECKLIST]],
        confidence=result.confidence,
        limitations=limitations or None,
    )
