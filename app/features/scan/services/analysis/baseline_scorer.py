"""
Deterministic conversion-readiness scoring.

The baseline is the fallback of record: it needs no network and no AI, and
it never raises. It is keyed off the home page (the first signal record),
with script weight across all scanned pages as a crude speed proxy.
"""
from typing import List, Optional, Sequence

from app.features.scan.schemas.scan import (
    BaselineResult,
    Breakdown,
    ChecklistItem,
    Issue,
    PriorityAction,
)
from app.features.scan.schemas.signals import PageSignals

BASE_SCORE = 50
MAX_BASELINE_ISSUES = 5

# Any page above this script count forfeits the lightweight-page bonus
SCRIPT_BONUS_THRESHOLD = 40
# Any page above this script count drops the speed sub-score
SCRIPT_SPEED_THRESHOLD = 50

SIGNAL_WEIGHTS = (
    ("h1", 5),
    ("meta_description", 3),
    ("has_cta", 8),
    ("cta_above_fold", 5),
    ("has_price", 5),
    ("price_above_fold", 3),
    ("has_contact", 5),
    ("has_shipping_returns", 5),
    ("has_trust_badges", 4),
    ("has_reviews", 4),
    ("has_viewport_mobile", 3),
)
PRODUCT_OR_CART_LINKS_WEIGHT = 5
LIGHT_SCRIPTS_WEIGHT = 5


def clamp_score(value, low: int = 0, high: int = 100) -> int:
    return int(max(low, min(high, round(value))))


def _home(signals: Sequence[PageSignals]) -> Optional[PageSignals]:
    return signals[0] if signals else None


def _flag_reader(home: Optional[PageSignals]):
    def has(field: str) -> bool:
        return bool(home is not None and getattr(home, field))
    return has


def _cta_problem(home: Optional[PageSignals]) -> bool:
    return home is None or not home.has_cta or not home.cta_above_fold


def compute_score(signals: Sequence[PageSignals]) -> int:
    home = _home(signals)
    if home is None:
        return BASE_SCORE

    score = BASE_SCORE
    for field, weight in SIGNAL_WEIGHTS:
        if getattr(home, field):
            score += weight
    if home.has_product_links or home.has_cart_links:
        score += PRODUCT_OR_CART_LINKS_WEIGHT
    if not any(s.script_count > SCRIPT_BONUS_THRESHOLD for s in signals):
        score += LIGHT_SCRIPTS_WEIGHT
    return clamp_score(score)


def compute_breakdown(signals: Sequence[PageSignals]) -> Breakdown:
    home = _home(signals)
    has = _flag_reader(home)

    if has("h1") and has("meta_description"):
        clarity = 70
    elif has("h1"):
        clarity = 55
    else:
        clarity = 40

    trust_signals = ("has_contact", "has_shipping_returns", "has_trust_badges", "has_reviews")
    trust = 25 * sum(1 for field in trust_signals if has(field))

    if has("has_price") and has("has_cta"):
        offer = 70
    elif has("has_price"):
        offer = 50
    else:
        offer = 35

    return Breakdown(
        clarity=clamp_score(clarity),
        trust=clamp_score(trust),
        ux=clamp_score(65 if has("has_viewport_mobile") else 45),
        offer=clamp_score(offer),
        speed=clamp_score(45 if any(s.script_count > SCRIPT_SPEED_THRESHOLD for s in signals) else 65),
        funnel=clamp_score(65 if has("has_product_links") or has("has_cart_links") else 45),
    )


def build_issues(signals: Sequence[PageSignals]) -> List[Issue]:
    home = _home(signals)
    if home is None:
        return []

    issues: List[Issue] = []
    if not home.h1:
        issues.append(Issue(
            id="no-h1",
            title="Missing or vague H1 heading",
            why="A clear H1 tells visitors what you sell and helps search engines.",
            fix_steps=[
                "Add a single H1 at the top of the home page",
                "Sum up the offer in one sentence",
            ],
            impact="medium",
            confidence="high",
        ))
    if _cta_problem(home):
        issues.append(Issue(
            id="cta-fold",
            title="Main call to action is not visible above the fold",
            why="Visitors should see the primary action without scrolling.",
            fix_steps=[
                "Place an action button (e.g. Add to cart) near the top of the page",
                "Give it a high-contrast colour",
            ],
            impact="high",
            confidence="high",
        ))
    if not home.has_contact:
        issues.append(Issue(
            id="no-contact",
            title="Contact page or contact details are hard to find",
            why="Trust drops when shoppers cannot reach you.",
            fix_steps=[
                "Add a Contact link to the header or footer",
                "Or show a mailto: link or phone number",
            ],
            impact="medium",
            confidence="high",
        ))
    if not home.has_shipping_returns:
        issues.append(Issue(
            id="no-shipping",
            title="Shipping and returns information is not visible",
            why="Buyers want to know delivery times and return conditions before paying.",
            fix_steps=[
                "Show shipping and returns on the home page or in the footer",
                "Link to a dedicated page if possible",
            ],
            impact="medium",
            confidence="medium",
        ))
    if not home.has_viewport_mobile:
        issues.append(Issue(
            id="viewport",
            title="Mobile viewport is not configured",
            why="The store may render poorly on phones.",
            fix_steps=[
                'Add <meta name="viewport" content="width=device-width, initial-scale=1"> to <head>',
            ],
            impact="high",
            confidence="high",
        ))
    return issues[:MAX_BASELINE_ISSUES]


def choose_priority_action(signals: Sequence[PageSignals]) -> PriorityAction:
    home = _home(signals)
    if _cta_problem(home):
        return PriorityAction(
            title="Put a visible main call to action at the top of the page",
            steps=[
                "Pick the primary action (e.g. Add to cart, Shop now)",
                "Place the button above the fold with a clear label",
                "Check the contrast so it stands out",
            ],
            time_minutes=30,
            expected_impact="high",
        )
    if not home.has_contact:
        return PriorityAction(
            title="Make it easy to contact you",
            steps=[
                "Add a Contact link to the menu or footer",
                "Check that the contact page or form works",
            ],
            time_minutes=15,
            expected_impact="medium",
        )
    return PriorityAction(
        title="Strengthen social proof and guarantees",
        steps=[
            "Show reviews or badges (secure payment, returns)",
            "Mention shipping and returns near the call to action or in the footer",
        ],
        time_minutes=20,
        expected_impact="medium",
    )


def build_checklist(signals: Sequence[PageSignals]) -> List[ChecklistItem]:
    home = _home(signals)
    has = _flag_reader(home)

    return [
        ChecklistItem(label="Clear H1 heading present", done=has("h1")),
        ChecklistItem(label="Meta description present", done=has("meta_description")),
        ChecklistItem(label="Main call to action above the fold", done=has("has_cta") and has("cta_above_fold")),
        ChecklistItem(label="Price visible quickly", done=has("price_above_fold") or has("has_price")),
        ChecklistItem(label="Contact link or details visible", done=has("has_contact")),
        ChecklistItem(label="Shipping / returns mentioned", done=has("has_shipping_returns")),
        ChecklistItem(label="Trust badges (payment, etc.)", done=has("has_trust_badges")),
        ChecklistItem(label="Reviews or ratings present", done=has("has_reviews")),
        ChecklistItem(label="Mobile viewport configured", done=has("has_viewport_mobile")),
        ChecklistItem(label="Links to products or cart", done=has("has_product_links") or has("has_cart_links")),
    ]


def compute_baseline(signals: Sequence[PageSignals]) -> BaselineResult:
    signals = list(signals or [])
    return BaselineResult(
        score=compute_score(signals),
        breakdown=compute_breakdown(signals),
        issues=build_issues(signals),
        priority_action=choose_priority_action(signals),
        checklist=build_checklist(signals),
    )
