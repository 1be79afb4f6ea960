import json
import logging
import re
from typing import Any, Iterator, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from app.features.scan.schemas.signals import PageSignals, PageType, StructuredProduct

logger = logging.getLogger(__name__)


class ExtractorService:
    """
    Turns one page of HTML into a PageSignals record.

    Pure: no network, no clock. The same HTML and URL always produce the
    same signals.
    """

    # Rough stand-in for the first viewport: no layout engine, just a prefix
    ABOVE_THE_FOLD_CHARS = 12000
    VISIBLE_TEXT_LIMIT = 15000
    MAX_H2_TEXTS = 20
    MAX_PRICE_VALUES = 40
    MAX_PRICE_VALUE = 100000

    CTA_KEYWORDS = re.compile(r"acheter|ajouter au panier|commander|buy|add to cart", re.I)
    PRICE_PATTERN = re.compile(r"\d+\s*[,.]?\d*\s*[€$£]|[€$£]\s*\d+", re.I)
    PRICE_VALUE_PATTERN = re.compile(r"[€$£]\s?\d+(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?\s?[€$£]")
    SHIPPING_KEYWORDS = re.compile(r"livraison|shipping|retour|return|delivery|expédition", re.I)
    CONTACT_KEYWORDS = re.compile(r"mailto:|tel:|contact|nous contacter|contactez", re.I)
    REVIEW_KEYWORDS = re.compile(r"review|avis|rating|étoile|star|trustpilot|google review", re.I)
    TRUST_KEYWORDS = re.compile(r"secure|ssl|paiement|payment|garantie|guarantee|trust", re.I)
    BUTTON_HINT = re.compile(r"button|btn|submit", re.I)
    MOBILE_VIEWPORT = re.compile(r"width=device-width|initial-scale=1", re.I)

    CTA_ELEMENTS = "button, a.btn, [role='button'], input[type='submit']"
    PRICE_ELEMENTS = "[data-price], .price, .product-price"
    TRUST_ELEMENTS = "img[alt*='trust'], img[alt*='secure'], [class*='badge'], [class*='trust']"
    CONTACT_LINKS = "a[href^='mailto:'], a[href^='tel:']"

    HOME_PATHS = {"", "/index.html", "/index.php", "/home"}

    # Evaluated top-down, first match wins
    PAGE_TYPE_PATTERNS = (
        ("product", re.compile(r"/(products?|produits?)/[^/]+", re.I)),
        ("collection", re.compile(r"/(collections?|categor(y|ies|ie)|products/?$|shop(/|$)|boutique)", re.I)),
        ("cart", re.compile(r"/(cart|panier|basket|checkout)(/|$)", re.I)),
        ("about", re.compile(r"/(about|a-propos|qui-sommes-nous|our-story)", re.I)),
        ("contact", re.compile(r"/(contact|nous-contacter)", re.I)),
    )

    @staticmethod
    def classify_page_type(url: str) -> PageType:
        path = urlparse(url).path.lower().rstrip("/")
        if path in ExtractorService.HOME_PATHS:
            return "home"
        for page_type, pattern in ExtractorService.PAGE_TYPE_PATTERNS:
            if pattern.search(path):
                return page_type
        return "other"

    @staticmethod
    def extract_price_values(html: str) -> List[float]:
        """Currency-adjacent numbers, deduplicated, bounded to (0, 100000)."""
        values: List[float] = []
        for match in ExtractorService.PRICE_VALUE_PATTERN.findall(html or ""):
            cleaned = re.sub(r"[^\d.,]", "", match).replace(",", ".", 1)
            try:
                value = float(cleaned)
            except ValueError:
                continue
            if 0 < value < ExtractorService.MAX_PRICE_VALUE and value not in values:
                values.append(value)
            if len(values) >= ExtractorService.MAX_PRICE_VALUES:
                break
        return values

    @staticmethod
    def _meta_content(soup: BeautifulSoup, **attrs) -> str:
        tag = soup.find("meta", attrs=attrs)
        if tag is None:
            return ""
        return (tag.get("content") or "").strip()

    @staticmethod
    def _extract_title(soup: BeautifulSoup) -> str:
        if soup.title and soup.title.get_text(strip=True):
            return soup.title.get_text(strip=True)
        return ExtractorService._meta_content(soup, property="og:title")

    @staticmethod
    def _extract_description(soup: BeautifulSoup) -> str:
        return (
            ExtractorService._meta_content(soup, name="description")
            or ExtractorService._meta_content(soup, property="og:description")
        )

    @staticmethod
    def _top_of_document(soup: BeautifulSoup, html: str) -> str:
        head = soup.head.decode_contents() if soup.head else ""
        body = soup.body.decode_contents() if soup.body else ""
        markup = head + body if (head or body) else html
        return markup[:ExtractorService.ABOVE_THE_FOLD_CHARS]

    @staticmethod
    def _link_paths(soup: BeautifulSoup, url: str) -> List[str]:
        paths: List[str] = []
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href or href.startswith("#") or href.lower().startswith("javascript:"):
                continue
            try:
                path = urlparse(urljoin(url, href)).path.lower()
            except ValueError:
                continue
            if path not in paths:
                paths.append(path)
        return paths

    @staticmethod
    def _visible_text(soup: BeautifulSoup) -> str:
        root = soup.body or soup
        for tag in root.find_all(["script", "style", "noscript", "template"]):
            tag.decompose()
        return re.sub(r"\s+", " ", root.get_text(" ")).strip()

    @staticmethod
    def _iter_product_nodes(node: Any) -> Iterator[dict]:
        if isinstance(node, list):
            for child in node:
                yield from ExtractorService._iter_product_nodes(child)
            return
        if not isinstance(node, dict):
            return

        types = node.get("@type")
        types = types if isinstance(types, list) else [types]
        if "Product" in types:
            yield node

        if isinstance(node.get("@graph"), list):
            yield from ExtractorService._iter_product_nodes(node["@graph"])

        if "ItemList" in types and isinstance(node.get("itemListElement"), list):
            for element in node["itemListElement"]:
                if isinstance(element, dict) and isinstance(element.get("item"), dict):
                    yield from ExtractorService._iter_product_nodes(element["item"])
                elif isinstance(element, dict) and element.get("@type") != "ListItem":
                    yield from ExtractorService._iter_product_nodes(element)

    @staticmethod
    def _to_number(value: Any) -> Optional[float]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(str(value).replace(",", ".").strip())
        except ValueError:
            return None

    @staticmethod
    def _structured_product(node: dict) -> Optional[StructuredProduct]:
        offers = node.get("offers")
        offers = offers if isinstance(offers, list) else [offers]
        price = None
        currency = None
        for offer in offers:
            if not isinstance(offer, dict):
                continue
            price = ExtractorService._to_number(offer.get("price", offer.get("lowPrice")))
            currency = offer.get("priceCurrency") if isinstance(offer.get("priceCurrency"), str) else None
            if price is not None:
                break

        rating = None
        aggregate = node.get("aggregateRating")
        if isinstance(aggregate, dict):
            rating = ExtractorService._to_number(aggregate.get("ratingValue"))

        image = node.get("image")
        image_count = len(image) if isinstance(image, list) else (1 if image else 0)

        name = node.get("name") if isinstance(node.get("name"), str) else None
        description = node.get("description") if isinstance(node.get("description"), str) else None
        url = node.get("url") or node.get("@id")
        url = url if isinstance(url, str) else None

        if not name and price is None:
            return None
        return StructuredProduct(
            name=name.strip() if name else None,
            price=price,
            currency=currency,
            rating=rating,
            description=description,
            image_count=image_count,
            url=url,
        )

    @staticmethod
    def extract_structured_data(soup: BeautifulSoup, url: str = "") -> List[StructuredProduct]:
        """Products from every JSON-LD block; unparseable blocks are skipped."""
        products: List[StructuredProduct] = []
        for script in soup.find_all("script", attrs={"type": re.compile(r"application/ld\+json", re.I)}):
            raw = script.string or script.get_text() or ""
            try:
                data = json.loads(raw)
            except ValueError:
                logger.debug(f"Skipping unparseable JSON-LD block on {url}")
                continue
            for node in ExtractorService._iter_product_nodes(data):
                product = ExtractorService._structured_product(node)
                if product is not None:
                    products.append(product)
        return products

    @staticmethod
    def extract_signals(html: str, url: str) -> PageSignals:
        html = html or ""
        soup = BeautifulSoup(html, "html.parser")
        html_lower = html.lower()
        top_html = ExtractorService._top_of_document(soup, html)

        h1_tag = soup.find("h1")
        h2_tags = soup.find_all("h2")
        h2_texts = [t.get_text(" ", strip=True) for t in h2_tags if t.get_text(strip=True)]
        images = soup.find_all("img")
        with_alt = sum(1 for img in images if (img.get("alt") or "").strip())
        viewport = ExtractorService._meta_content(soup, name="viewport")
        paths = ExtractorService._link_paths(soup, url)
        structured_data = ExtractorService.extract_structured_data(soup, url)
        script_count = len(soup.find_all("script"))

        has_cta_elements = bool(soup.select(ExtractorService.CTA_ELEMENTS))
        has_price_elements = bool(soup.select(ExtractorService.PRICE_ELEMENTS))
        has_trust_elements = bool(soup.select(ExtractorService.TRUST_ELEMENTS))
        has_contact_links = bool(soup.select(ExtractorService.CONTACT_LINKS))
        has_canonical = soup.find("link", rel="canonical", href=True) is not None
        has_open_graph = soup.find("meta", attrs={"property": re.compile(r"^og:", re.I)}) is not None

        # Decomposes script/style tags, so it runs after every DOM query above
        visible_text = ExtractorService._visible_text(soup)

        has_cta = bool(ExtractorService.CTA_KEYWORDS.search(html_lower)) and (
            has_cta_elements or bool(ExtractorService.CTA_KEYWORDS.search(visible_text))
        )
        has_price = bool(ExtractorService.PRICE_PATTERN.search(html_lower)) or has_price_elements

        cta_above_fold = bool(ExtractorService.CTA_KEYWORDS.search(top_html)) and (
            has_cta or bool(ExtractorService.BUTTON_HINT.search(top_html))
        )
        price_above_fold = bool(ExtractorService.PRICE_PATTERN.search(top_html)) or bool(
            re.search(r"class=[\"'][^\"']*\b(price|product-price)\b", top_html, re.I)
        )

        return PageSignals(
            url=url,
            page_type=ExtractorService.classify_page_type(url),
            title=ExtractorService._extract_title(soup),
            h1=h1_tag.get_text(" ", strip=True) if h1_tag else "",
            meta_description=ExtractorService._extract_description(soup),
            h2_texts=h2_texts[:ExtractorService.MAX_H2_TEXTS],
            has_cta=has_cta,
            has_price=has_price,
            has_shipping_returns=bool(ExtractorService.SHIPPING_KEYWORDS.search(visible_text)),
            has_contact=bool(ExtractorService.CONTACT_KEYWORDS.search(html_lower)) or has_contact_links,
            has_reviews=bool(ExtractorService.REVIEW_KEYWORDS.search(html_lower)),
            has_trust_badges=bool(ExtractorService.TRUST_KEYWORDS.search(html_lower)) or has_trust_elements,
            has_viewport_mobile=bool(ExtractorService.MOBILE_VIEWPORT.search(viewport)),
            has_canonical=has_canonical,
            has_open_graph=has_open_graph,
            has_product_links=any("/product" in p or "/produit" in p for p in paths),
            has_cart_links=any("/cart" in p or "/panier" in p for p in paths),
            script_count=script_count,
            image_count=len(images),
            h2_count=len(h2_tags),
            word_count=len(visible_text.split()),
            image_alt_ratio=round(with_alt / len(images), 3) if images else 1.0,
            structured_data=structured_data,
            cta_above_fold=cta_above_fold,
            price_above_fold=price_above_fold,
            visible_text=visible_text[:ExtractorService.VISIBLE_TEXT_LIMIT],
        )
