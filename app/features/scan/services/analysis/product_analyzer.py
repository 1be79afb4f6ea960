"""
Per-product analysis.

Products reach the scan from four places (a crawled product page, JSON-LD
embedded in any page, a connector feed, or the store's public catalog
endpoint) and every path produces the same ProductAnalysis shape.
"""
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from app.features.scan.schemas.scan import CommerceApiProduct, ProductAnalysis
from app.features.scan.schemas.signals import PageSignals, StructuredProduct
from app.features.scan.services.extraction.extractor_service import ExtractorService
from app.platform.config import settings
from app.platform.utils.url_validator import origin_of

logger = logging.getLogger(__name__)

MAX_PRICES_PER_PRODUCT = 20
MIN_PRODUCT_IMAGES = 3
MIN_DESCRIPTION_CHARS = 50
META_DESCRIPTION_CHARS = 160
CATALOG_PAGE_SIZE = 250

CTA_PATTERN = re.compile(r"acheter|ajouter au panier|add to cart|buy now|commander", re.I)
REVIEW_PATTERN = re.compile(r"review|avis|rating|étoile|star|trustpilot|google review", re.I)
TRUST_PATTERN = re.compile(r"secure|ssl|paiement|payment|garantie|guarantee|trust", re.I)
SHIPPING_PATTERN = re.compile(r"livraison|shipping|retour|return|delivery|expédition", re.I)
TAG_PATTERN = re.compile(r"<[^>]*>")


def average(values: Iterable[float]) -> Optional[float]:
    values = list(values)
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def _strip_tags(markup: Optional[str]) -> str:
    return re.sub(r"\s+", " ", TAG_PATTERN.sub(" ", markup or "")).strip()


def _positive_prices(raw_prices: Iterable[Any]) -> List[float]:
    prices = []
    for raw in raw_prices:
        try:
            value = float(str(raw).replace(",", "."))
        except (TypeError, ValueError):
            continue
        if value > 0:
            prices.append(value)
    return prices


def _feed_findings(
    description_html: Optional[str],
    images: List[Dict[str, Optional[str]]],
    prices: List[float],
    tags: str,
) -> Dict[str, List[str]]:
    """Shared rules for products that come from a feed rather than a page."""
    issues: List[str] = []
    recommendations: List[str] = []
    description = _strip_tags(description_html)

    if len(description) < MIN_DESCRIPTION_CHARS:
        issues.append("Product description is too short or missing.")
        recommendations.append("Write a persuasive description focused on benefits, not just specs.")
    if len(images) < MIN_PRODUCT_IMAGES:
        issues.append(f"Only {len(images)} image(s), which is not enough.")
        recommendations.append("Add at least 3-5 images: different angles, close-ups, in-use shots.")
    missing_alt = sum(1 for image in images if not (image.get("alt") or "").strip())
    if missing_alt:
        issues.append(f"{missing_alt} image(s) without alt text.")
        recommendations.append("Give every image a descriptive alt text for SEO.")
    if not prices:
        issues.append("No price found on the variants.")
        recommendations.append("Make sure every variant has a price.")
    if not tags.strip():
        issues.append("No tags or category defined.")
        recommendations.append("Add tags to improve navigation and internal SEO.")
    if not SHIPPING_PATTERN.search(description):
        issues.append("No shipping or returns information in the description.")
        recommendations.append("Mention shipping and returns conditions on the product page.")
    if not REVIEW_PATTERN.search(description):
        issues.append("No social proof (reviews) in the description.")
        recommendations.append("Show customer reviews or a rating on the product page.")

    return {"issues": issues, "recommendations": recommendations}


def analyze_product_page(html: str, url: str, signals: Optional[PageSignals] = None) -> ProductAnalysis:
    """Analysis of a crawled product page."""
    if signals is None:
        signals = ExtractorService.extract_signals(html, url)
    html_lower = (html or "").lower()
    prices = ExtractorService.extract_price_values(html)
    has_cta = bool(CTA_PATTERN.search(html_lower))
    has_reviews = bool(REVIEW_PATTERN.search(html_lower))
    has_shipping = bool(SHIPPING_PATTERN.search(html_lower))

    issues: List[str] = []
    recommendations: List[str] = []
    if not signals.h1:
        issues.append("Missing H1 heading on the product page.")
        recommendations.append("Add a clear H1 that states the main benefit.")
    if not has_cta:
        issues.append("Purchase call to action is hard to see.")
        recommendations.append("Show an Add to cart button without scrolling.")
    if not prices:
        issues.append("No clearly detectable price.")
        recommendations.append("Show the price next to the title and the call to action.")
    if not has_reviews:
        issues.append("No customer reviews detected.")
        recommendations.append("Add reviews or other social proof to the product page.")
    if not has_shipping:
        issues.append("Shipping and returns information not visible.")
        recommendations.append("Add a shipping/returns block near the call to action.")
    if signals.image_count < MIN_PRODUCT_IMAGES:
        issues.append("Few product images detected.")
        recommendations.append("Add more visuals (angles, zoom, in-use context).")

    return ProductAnalysis(
        url=url,
        source="page",
        title=signals.title,
        h1=signals.h1,
        meta_description=signals.meta_description,
        image_count=signals.image_count,
        script_count=signals.script_count,
        detected_prices=prices[:MAX_PRICES_PER_PRODUCT],
        average_price=average(prices),
        has_cta=has_cta,
        has_reviews=has_reviews,
        has_trust_badges=bool(TRUST_PATTERN.search(html_lower)),
        has_shipping_returns=has_shipping,
        issues=issues,
        recommendations=recommendations,
    )


def _structured_analysis(product: StructuredProduct, page_url: str, html_lower: str) -> Optional[ProductAnalysis]:
    if not product.name:
        return None
    prices = [product.price] if product.price and product.price > 0 else []
    description = product.description or ""

    issues: List[str] = []
    recommendations: List[str] = []
    if len(description) < MIN_DESCRIPTION_CHARS:
        issues.append("Product description is too short.")
        recommendations.append("Expand the description with concrete benefits.")
    if product.image_count < MIN_PRODUCT_IMAGES:
        issues.append(f"Only {product.image_count} image(s) detected.")
        recommendations.append("Add at least 3-5 product images.")
    if not prices:
        issues.append("No price in the structured data.")
        recommendations.append("Publish a visible price and matching structured data.")

    return ProductAnalysis(
        url=product.url or page_url,
        source="structured_data",
        title=product.name,
        h1=product.name,
        meta_description=description[:META_DESCRIPTION_CHARS],
        image_count=product.image_count,
        detected_prices=prices,
        average_price=average(prices),
        has_cta=bool(CTA_PATTERN.search(html_lower)),
        has_reviews=product.rating is not None or bool(REVIEW_PATTERN.search(html_lower)),
        has_trust_badges=bool(TRUST_PATTERN.search(html_lower)),
        has_shipping_returns=bool(SHIPPING_PATTERN.search(html_lower)),
        issues=issues,
        recommendations=recommendations,
    )


def products_from_structured_data(signals: PageSignals, html: str) -> List[ProductAnalysis]:
    """Analyses for every JSON-LD Product already parsed into `signals`."""
    html_lower = (html or "").lower()
    analyses = []
    for product in signals.structured_data:
        analysis = _structured_analysis(product, signals.url, html_lower)
        if analysis is not None:
            analyses.append(analysis)
    return analyses


def analyze_commerce_products(products: Iterable[CommerceApiProduct], origin: str = "") -> List[ProductAnalysis]:
    """Analyses for products delivered by a commerce-platform connector."""
    analyses = []
    for product in products:
        images = [{"src": image.src, "alt": image.alt} for image in product.images]
        prices = _positive_prices(variant.price for variant in product.variants)
        tags = ", ".join(product.tags) if isinstance(product.tags, list) else (product.tags or "")
        description = product.body_html or ""
        description_lower = description.lower()
        findings = _feed_findings(description, images, prices, tags)

        handle = product.handle or re.sub(r"[^a-z0-9]+", "-", product.title.lower()).strip("-")
        analyses.append(ProductAnalysis(
            url=f"{origin}/products/{handle}" if origin else f"shopify://products/{handle}",
            source="commerce_api",
            title=product.title,
            h1=product.title,
            meta_description=_strip_tags(description)[:META_DESCRIPTION_CHARS],
            image_count=len(images),
            detected_prices=prices[:MAX_PRICES_PER_PRODUCT],
            average_price=average(prices),
            # Connector products are always purchasable from the storefront
            has_cta=True,
            has_reviews=bool(REVIEW_PATTERN.search(description_lower)),
            has_trust_badges=bool(TRUST_PATTERN.search(description_lower)),
            has_shipping_returns=bool(SHIPPING_PATTERN.search(description_lower)),
            **findings,
        ))
    return analyses


def _catalog_analysis(raw: Dict[str, Any], origin: str) -> ProductAnalysis:
    images = [
        {"src": image.get("src"), "alt": image.get("alt")}
        for image in raw.get("images") or []
        if isinstance(image, dict)
    ]
    variants = [v for v in raw.get("variants") or [] if isinstance(v, dict)]
    prices = _positive_prices(variant.get("price") for variant in variants)
    tags = raw.get("tags") or ""
    tags = ", ".join(tags) if isinstance(tags, list) else str(tags)
    description = str(raw.get("body_html") or "")
    description_lower = description.lower()
    title = str(raw.get("title") or "")

    return ProductAnalysis(
        url=f"{origin}/products/{raw.get('handle') or ''}",
        source="catalog",
        title=title,
        h1=title,
        meta_description=_strip_tags(description)[:META_DESCRIPTION_CHARS],
        image_count=len(images),
        detected_prices=prices[:MAX_PRICES_PER_PRODUCT],
        average_price=average(prices),
        has_cta=True,
        has_reviews=bool(REVIEW_PATTERN.search(description_lower)),
        has_trust_badges=bool(TRUST_PATTERN.search(description_lower)),
        has_shipping_returns=bool(SHIPPING_PATTERN.search(description_lower)),
        **_feed_findings(description, images, prices, tags),
    )


async def fetch_public_catalog(base_url: str, fetcher) -> List[ProductAnalysis]:
    """
    Analyses from the public /products.json catalog that Shopify stores expose.

    Best-effort: any failure or unexpected payload yields an empty list.
    """
    origin = origin_of(base_url)
    text = await fetcher.fetch_text(
        f"{origin}/products.json?limit={CATALOG_PAGE_SIZE}",
        timeout=settings.SITEMAP_TIMEOUT_SECONDS,
    )
    if not text:
        return []
    try:
        payload = json.loads(text)
    except ValueError:
        logger.debug(f"Public catalog for {origin} is not JSON")
        return []

    products = payload.get("products") if isinstance(payload, dict) else None
    if not isinstance(products, list):
        return []

    analyses = [_catalog_analysis(raw, origin) for raw in products if isinstance(raw, dict)]
    logger.info(f"Public catalog for {origin}: {len(analyses)} products")
    return analyses

