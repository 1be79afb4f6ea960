"""
Prompt construction for the AI scan summary.
"""
import json
from typing import List, Optional, Sequence

from app.features.scan.schemas.scan import PriceInsights, ProductAnalysis, ScanRequest
from app.features.scan.schemas.signals import PageSignals

MAX_LISTED_PAGES = 20
MAX_PAGE_SAMPLES = 8
MAX_SAMPLE_TEXT_CHARS = 2000
MAX_SAMPLE_H2 = 5
MAX_SAMPLE_PRODUCTS = 3
MAX_PROMPT_PRODUCTS = 10
MAX_PRODUCT_ISSUES = 3

SCAN_SYSTEM_PROMPT = """You are a senior e-commerce consultant specialised in conversion rate optimisation, UX, SEO and conversion copywriting.

MISSION: analyse in depth every page, every product and every element of the store provided.

RULES:
- Work from the visible text, headings, descriptions, calls to action, images, structure and product data.
- Identify every conversion problem, even subtle ones (weak copy, no urgency, no social proof, ...).
- Give very concrete actions with example copy specific to this store.
- Never promise quantified financial results.
- Give at least 6 detailed issues, each with fix_steps that can be applied immediately.
- If information is missing, say so and set notes.confidence to "low".
- Score strictly: an average store is 40-55, a good store 65-75, an excellent store 80+.
- Reply with valid JSON only, no text before or after."""

RESPONSE_SHAPE_INSTRUCTION = (
    "Return a JSON object with: score (0-100), breakdown (clarity, trust, ux, offer, speed, funnel, "
    "each 0-100), priority_action (title, steps[], time_minutes, expected_impact), issues[] (id, title, "
    "why, fix_steps[], impact, confidence), at least 6 detailed issues, checklist[] ({label, done}), "
    "notes (confidence, limitations[])."
)


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "NO"


def _signals_summary(signals: Sequence[PageSignals]) -> str:
    pages = [
        s.model_dump(exclude={"visible_text", "h2_texts", "structured_data"})
        for s in signals
    ]
    return json.dumps({"pages": pages}, indent=2, ensure_ascii=False)


def _page_sample_lines(page: PageSignals) -> List[str]:
    lines = [
        f"\n### {page.page_type.upper()} - {page.url}",
        f"Title: {page.title}",
        f"H1: {page.h1 or 'MISSING'}",
        f"Words: {page.word_count}",
        f"Canonical: {_yes_no(page.has_canonical)}",
        f"Open Graph: {_yes_no(page.has_open_graph)}",
        f"Image alt text: {round(page.image_alt_ratio * 100)}%",
    ]
    if page.h2_texts:
        lines.append(f"H2 structure: {' | '.join(page.h2_texts[:MAX_SAMPLE_H2])}")
    if page.structured_data:
        excerpts = [
            p.model_dump(exclude_none=True, exclude={"description"})
            for p in page.structured_data[:MAX_SAMPLE_PRODUCTS]
        ]
        lines.append(f"Structured data: {json.dumps(excerpts, ensure_ascii=False)}")
    if page.visible_text:
        lines.append(f'Text excerpt: "{page.visible_text[:MAX_SAMPLE_TEXT_CHARS]}"')
    return lines


def _product_lines(product: ProductAnalysis) -> List[str]:
    price = product.average_price if product.average_price is not None else "N/A"
    lines = [
        f"\n### Product: {product.title or product.url}",
        f"URL: {product.url}",
        (
            f"Images: {product.image_count} | Price: {price} | CTA: {_yes_no(product.has_cta)} | "
            f"Reviews: {_yes_no(product.has_reviews)} | Trust: {_yes_no(product.has_trust_badges)} | "
            f"Shipping: {_yes_no(product.has_shipping_returns)}"
        ),
    ]
    if product.issues:
        lines.append(f"Problems: {'; '.join(product.issues[:MAX_PRODUCT_ISSUES])}")
    return lines


def build_scan_user_message(
    request: ScanRequest,
    store_url: str,
    signals: Sequence[PageSignals],
    pages_scanned: Sequence[str],
    product_analysis: Sequence[ProductAnalysis],
    price_insights: Optional[PriceInsights],
) -> str:
    def or_unknown(value) -> str:
        return value if value else "not specified"

    lines = [
        "## Store",
        f"URL: {store_url}",
        f"Platform: {or_unknown(request.platform)}",
        f"Country: {or_unknown(request.country)}",
        f"Stage: {or_unknown(request.stage)}",
        f"Traffic source: {or_unknown(request.traffic_source)}",
        f"Average order value (bucket): {or_unknown(request.aov_bucket)}",
        f"Goal: {or_unknown(request.goal)}",
        "",
        "## Extracted signals (summary)",
        _signals_summary(signals),
        "",
        "## Pages analysed",
        f"Total: {len(pages_scanned)} pages",
        *[f"- {url}" for url in pages_scanned[:MAX_LISTED_PAGES]],
    ]
    if len(pages_scanned) > MAX_LISTED_PAGES:
        lines.append(f"... and {len(pages_scanned) - MAX_LISTED_PAGES} more pages")

    if signals:
        lines += ["", "## Page contents (visible text, truncated)"]
        for page in list(signals)[:MAX_PAGE_SAMPLES]:
            lines += _page_sample_lines(page)

    if product_analysis:
        lines += ["", "## Product analysis", f"Products analysed: {len(product_analysis)}"]
        for product in list(product_analysis)[:MAX_PROMPT_PRODUCTS]:
            lines += _product_lines(product)

    if price_insights and price_insights.own_average_price is not None:
        lines += [
            "",
            "## Price insights",
            f"Average price: {price_insights.own_average_price}",
            f"Min price: {price_insights.own_min_price}",
            f"Max price: {price_insights.own_max_price}",
            f"Products with a price: {len(price_insights.product_pages)}",
        ]
        if price_insights.competitor_average_price is not None:
            lines.append(f"Estimated competitor average: {price_insights.competitor_average_price}")

    metrics = request.metrics
    if metrics and any(v is not None for v in (metrics.orders, metrics.revenue, metrics.customers)):
        lines += ["", "## Metrics (platform integration)"]
        if metrics.orders is not None:
            lines.append(f"Orders: {metrics.orders}")
        if metrics.revenue is not None:
            lines.append(f"Revenue: {metrics.revenue}")
        if metrics.customers is not None:
            lines.append(f"Customers: {metrics.customers}")
        if metrics.aov is not None:
            lines.append(f"Average order value: {metrics.aov}")

    if not metrics or (not metrics.orders and not metrics.revenue):
        lines += [
            "",
            "IMPORTANT: URL-only scan (no platform data). Include 'URL-only scan' in notes.limitations.",
        ]

    lines += [
        "",
        "Analyse this e-commerce store in depth. Assess every page and every product.",
        "For each problem give very concrete fix_steps with examples specific to this store.",
        "Put the most critical conversion problems first.",
        "",
        RESPONSE_SHAPE_INSTRUCTION,
    ]
    return "\n".join(lines)
