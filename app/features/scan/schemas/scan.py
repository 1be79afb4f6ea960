"""
Scan Schemas

Job intake, the baseline/AI result shapes and the redacted preview.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

Impact = Literal["low", "medium", "high"]
Confidence = Literal["low", "medium", "high"]
FetchMode = Literal["rendered", "plain"]
AIRunStatus = Literal["ok", "failed", "skipped"]


# ============================================================================
# Job intake
# ============================================================================

class StoreMetrics(BaseModel):
    """Business metrics supplied by a commerce-platform connector."""
    orders: Optional[int] = None
    revenue: Optional[float] = None
    customers: Optional[int] = None
    aov: Optional[float] = None


class CommerceApiImage(BaseModel):
    src: Optional[str] = None
    alt: Optional[str] = None


class CommerceApiVariant(BaseModel):
    price: Optional[Union[float, str]] = None
    sku: Optional[str] = None


class CommerceApiProduct(BaseModel):
    """A product as delivered by a connector feed (Shopify Admin shape)."""
    title: str = ""
    body_html: Optional[str] = None
    handle: Optional[str] = None
    product_type: Optional[str] = None
    tags: Union[List[str], str, None] = None
    images: List[CommerceApiImage] = Field(default_factory=list)
    variants: List[CommerceApiVariant] = Field(default_factory=list)


class ScanRequest(BaseModel):
    """Request to start a storefront scan."""
    url: str
    platform: Optional[str] = None
    country: Optional[str] = None
    stage: Optional[str] = None
    traffic_source: Optional[str] = None
    aov_bucket: Optional[str] = None
    goal: Optional[str] = None
    metrics: Optional[StoreMetrics] = None
    commerce_api_products: List[CommerceApiProduct] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://shop.example.com",
                "platform": "shopify",
                "country": "FR",
                "stage": "launch",
                "traffic_source": "instagram",
                "aov_bucket": "30-60",
                "goal": "increase conversion",
            }
        }


class ScanStartResponse(BaseModel):
    """Response after queueing a scan."""
    job_id: str
    status: str
    message: str


class ScanStatusResponse(BaseModel):
    job_id: str
    status: str
    progress: int = 0
    step: Optional[str] = None
    message: Optional[str] = None


# ============================================================================
# Baseline result
# ============================================================================

class Breakdown(BaseModel):
    clarity: int = Field(default=0, ge=0, le=100)
    trust: int = Field(default=0, ge=0, le=100)
    ux: int = Field(default=0, ge=0, le=100)
    offer: int = Field(default=0, ge=0, le=100)
    speed: int = Field(default=0, ge=0, le=100)
    funnel: int = Field(default=0, ge=0, le=100)


class Issue(BaseModel):
    id: str
    title: str
    why: str = ""
    fix_steps: List[str] = Field(default_factory=list)
    impact: Impact = "medium"
    confidence: Impact = "medium"


class PriorityAction(BaseModel):
    title: str
    steps: List[str] = Field(default_factory=list)
    time_minutes: int = 0
    expected_impact: Impact = "medium"


class ChecklistItem(BaseModel):
    label: str
    done: bool = False


class BaselineResult(BaseModel):
    score: int = Field(ge=0, le=100)
    breakdown: Breakdown
    issues: List[Issue] = Field(default_factory=list)
    priority_action: PriorityAction
    checklist: List[ChecklistItem] = Field(default_factory=list)


# ============================================================================
# Products & prices
# ============================================================================

class ProductAnalysis(BaseModel):
    url: str
    source: Literal["page", "structured_data", "catalog", "commerce_api"] = "page"
    title: str = ""
    h1: str = ""
    meta_description: str = ""
    detected_prices: List[float] = Field(default_factory=list)
    average_price: Optional[float] = None
    image_count: int = 0
    script_count: int = 0
    has_cta: bool = False
    has_reviews: bool = False
    has_trust_badges: bool = False
    has_shipping_returns: bool = False
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class PriceInsights(BaseModel):
    detected_prices: List[float] = Field(default_factory=list)
    own_average_price: Optional[float] = None
    own_min_price: Optional[float] = None
    own_max_price: Optional[float] = None
    product_pages: List[str] = Field(default_factory=list)
    competitor_average_price: Optional[float] = None


# ============================================================================
# Full result
# ============================================================================

class Timings(BaseModel):
    fetch_ms: int = 0
    ai_ms: int = 0
    total_ms: int = 0


class AIStatus(BaseModel):
    enabled: bool = False
    status: AIRunStatus = "skipped"
    error_code: Optional[str] = None


class RawDiagnostics(BaseModel):
    mode: FetchMode = "rendered"
    timings: Timings = Field(default_factory=Timings)
    ai: AIStatus = Field(default_factory=AIStatus)
    business_metrics: Optional[Dict[str, Any]] = None
    product_analysis: List[ProductAnalysis] = Field(default_factory=list)
    price_insights: PriceInsights = Field(default_factory=PriceInsights)
    pages_failed: int = 0
    # Fan-out pages that fell back to plain after a failed render
    pages_downgraded: int = 0
    budget_exhausted: bool = False


class ScanResult(BaselineResult):
    confidence: Confidence = "low"
    pages_scanned: List[str] = Field(default_factory=list)
    limitations: List[str] = Field(default_factory=list)
    raw: RawDiagnostics = Field(default_factory=RawDiagnostics)

    @field_validator("pages_scanned")
    @classmethod
    def _dedupe_pages(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))


# ============================================================================
# Preview
# ============================================================================

class PreviewIssue(BaseModel):
    title: str
    impact: Impact


class ScanPreview(BaseModel):
    """Redacted projection of a ScanResult for unentitled viewers."""
    score: int
    priority_action: PriorityAction
    top_3_issues: List[PreviewIssue] = Field(default_factory=list)
    checklist: List[ChecklistItem] = Field(default_factory=list)
    confidence: Confidence
    limitations: Optional[List[str]] = None


class ProgressEvent(BaseModel):
    percent: int = Field(ge=0, le=100)
    step: str
    message: str
