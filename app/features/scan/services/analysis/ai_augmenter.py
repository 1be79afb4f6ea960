"""
AI augmentation of the baseline result.

One JSON-mode chat completion per scan, no retries. The response is parsed
leniently into an `AIScanPatch` and folded over the baseline by
`merge_ai_patch`, a pure reducer that can be tested without the network.
"""
import asyncio
import json
import logging
import math
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI
from pydantic import BaseModel, ValidationError

from app.features.scan.schemas.scan import (
    Breakdown,
    ChecklistItem,
    Issue,
    PriorityAction,
    ScanResult,
)
from app.features.scan.services.analysis.baseline_scorer import clamp_score
from app.platform.config import settings

logger = logging.getLogger(__name__)

OPENAI_KEY_INVALID = "OPENAI_KEY_INVALID"
OPENAI_RATE_LIMIT = "OPENAI_RATE_LIMIT"
OPENAI_TIMEOUT = "OPENAI_TIMEOUT"
OPENAI_NETWORK = "OPENAI_NETWORK"
OPENAI_API_ERROR = "OPENAI_API_ERROR"
AI_BAD_JSON = "AI_BAD_JSON"

MAX_AI_ISSUES = 10
MAX_AI_CHECKLIST = 10

LEVELS = ("low", "medium", "high")
BREAKDOWN_FIELDS = ("clarity", "trust", "ux", "offer", "speed", "funnel")
KNOWN_KEYS = {"score", "breakdown", "priority_action", "issues", "checklist", "notes"}


class AIAugmentError(Exception):
    def __init__(self, code: str, detail: str = ""):
        self.code = code
        self.detail = detail
        super().__init__(f"{code}: {detail}" if detail else code)


# ============================================================================
# Lenient patch model
# ============================================================================

class AIPriorityActionPatch(BaseModel):
    title: Optional[str] = None
    steps: Optional[List[str]] = None
    time_minutes: Optional[int] = None
    expected_impact: Optional[str] = None


class AIIssuePatch(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None
    why: Optional[str] = None
    fix_steps: Optional[List[str]] = None
    impact: Optional[str] = None
    confidence: Optional[str] = None


class AIChecklistPatch(BaseModel):
    label: Optional[str] = None
    done: Optional[bool] = None


class AINotesPatch(BaseModel):
    confidence: Optional[str] = None
    limitations: Optional[List[str]] = None


class AIScanPatch(BaseModel):
    """Whatever survived validation of the model's JSON. Every field is optional."""
    score: Optional[float] = None
    breakdown: Dict[str, float] = {}
    priority_action: Optional[AIPriorityActionPatch] = None
    issues: List[AIIssuePatch] = []
    checklist: List[AIChecklistPatch] = []
    notes: Optional[AINotesPatch] = None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _validate_or_none(model, value: Any):
    if not isinstance(value, dict):
        return None
    try:
        return model.model_validate(value)
    except ValidationError:
        return None


def _validate_items(model, value: Any) -> list:
    if not isinstance(value, list):
        return []
    items = (_validate_or_none(model, item) for item in value)
    return [item for item in items if item is not None]


def parse_ai_patch(data: Any) -> AIScanPatch:
    """
    Field-by-field validation of the model output.

    The payload itself must be a JSON object carrying at least one known key;
    inside it, a malformed field or list item is dropped on its own.
    """
    if not isinstance(data, dict):
        raise AIAugmentError(AI_BAD_JSON, f"expected a JSON object, got {type(data).__name__}")
    if not KNOWN_KEYS & set(data):
        raise AIAugmentError(AI_BAD_JSON, "response has none of the expected fields")

    breakdown = data.get("breakdown")
    return AIScanPatch(
        score=data["score"] if _is_number(data.get("score")) else None,
        breakdown={
            key: breakdown[key]
            for key in BREAKDOWN_FIELDS
            if isinstance(breakdown, dict) and _is_number(breakdown.get(key))
        },
        priority_action=_validate_or_none(AIPriorityActionPatch, data.get("priority_action")),
        issues=_validate_items(AIIssuePatch, data.get("issues")),
        checklist=_validate_items(AIChecklistPatch, data.get("checklist")),
        notes=_validate_or_none(AINotesPatch, data.get("notes")),
    )


# ============================================================================
# Reducer
# ============================================================================

def _level(value: Optional[str], default: str = "medium") -> str:
    value = (value or "").strip().lower()
    return value if value in LEVELS else default


def merge_ai_patch(base: ScanResult, patch: AIScanPatch) -> ScanResult:
    """
    (baseline, ai_patch) -> merged result.

    A present numeric score replaces the baseline score; breakdown values are
    clamped one by one and missing ones keep the baseline value; issues and
    checklist replace the baseline only when the AI list is non-empty.
    """
    update: Dict[str, Any] = {}

    if patch.score is not None:
        update["score"] = clamp_score(patch.score)

    if patch.breakdown:
        update["breakdown"] = Breakdown(**{
            field: clamp_score(patch.breakdown.get(field, getattr(base.breakdown, field)))
            for field in BREAKDOWN_FIELDS
        })

    action = patch.priority_action
    if action is not None and action.title and action.title.strip():
        update["priority_action"] = PriorityAction(
            title=action.title.strip(),
            steps=action.steps if action.steps is not None else base.priority_action.steps,
            time_minutes=action.time_minutes if action.time_minutes is not None else base.priority_action.time_minutes,
            expected_impact=_level(action.expected_impact, base.priority_action.expected_impact),
        )

    issues = [
        Issue(
            id=issue.id or f"ai-issue-{index + 1}",
            title=issue.title or "Issue",
            why=issue.why or "",
            fix_steps=issue.fix_steps or [],
            impact=_level(issue.impact),
            confidence=_level(issue.confidence),
        )
        for index, issue in enumerate(patch.issues[:MAX_AI_ISSUES])
        if issue.title or issue.why
    ]
    if issues:
        update["issues"] = issues

    checklist = [
        ChecklistItem(label=item.label.strip(), done=item.done is True)
        for item in patch.checklist[:MAX_AI_CHECKLIST]
        if item.label and item.label.strip()
    ]
    if checklist:
        update["checklist"] = checklist

    notes = patch.notes or AINotesPatch()
    update["confidence"] = _level(notes.confidence)
    if notes.limitations:
        update["limitations"] = [str(note) for note in notes.limitations if str(note).strip()]

    return base.model_copy(update=update, deep=True)


# ============================================================================
# Provider call
# ============================================================================

def _strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


class AIAugmenter:
    def __init__(
        self,
        client: Optional[OpenAI] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise AIAugmentError(OPENAI_KEY_INVALID, "OPENAI_API_KEY is not set")
            self._client = OpenAI(
                api_key=self.api_key,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    def call_ai_json(self, system: str, user: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """One chat completion in JSON mode. Raises AIAugmentError with a stable code."""
        client = self._get_client()
        try:
            completion = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                response_format={"type": "json_object"},
                temperature=settings.OPENAI_TEMPERATURE,
                max_tokens=settings.OPENAI_MAX_OUTPUT_TOKENS,
                timeout=timeout or settings.OPENAI_TIMEOUT_SECONDS,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise AIAugmentError(OPENAI_KEY_INVALID, str(e)) from e
        except openai.RateLimitError as e:
            raise AIAugmentError(OPENAI_RATE_LIMIT, str(e)) from e
        except openai.APITimeoutError as e:
            raise AIAugmentError(OPENAI_TIMEOUT, str(e)) from e
        except openai.APIConnectionError as e:
            raise AIAugmentError(OPENAI_NETWORK, str(e)) from e
        except openai.APIError as e:
            raise AIAugmentError(OPENAI_API_ERROR, str(e)) from e

        content = ""
        if completion.choices:
            content = completion.choices[0].message.content or ""
        if not content.strip():
            raise AIAugmentError(AI_BAD_JSON, "empty response")

        try:
            return json.loads(content)
        except json.JSONDecodeError:
            logger.warning("AI response is not plain JSON, retrying parse without code fences")
        try:
            return json.loads(_strip_code_fences(content))
        except json.JSONDecodeError as e:
            raise AIAugmentError(AI_BAD_JSON, f"unparseable response: {e}") from e

    async def augment(self, system: str, user: str, timeout: Optional[float] = None) -> AIScanPatch:
        data = await asyncio.to_thread(self.call_ai_json, system, user, timeout)
        return parse_ai_patch(data)
