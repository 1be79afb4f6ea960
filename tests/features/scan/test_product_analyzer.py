import json

import pytest

from app.features.scan.schemas.scan import CommerceApiProduct
from app.features.scan.services.analysis.product_analyzer import (
    analyze_commerce_products,
    analyze_product_page,
    average,
    fetch_public_catalog,
    products_from_structured_data,
)
from app.features.scan.services.extraction.extractor_service import ExtractorService
from scan_fakes import STORE, FakeFetcher, product_html


class TestAnalyzeProductPage:
    def test_product_page_findings(self):
        """Test the analysis of a crawled product page"""
        url = f"{STORE}/products/mug-a"
        analysis = analyze_product_page(product_html("Mug A", "€19.99"), url)

        assert analysis.source == "page"
        assert analysis.url == url
        assert analysis.title == "Mug A"
        assert analysis.detected_prices == [19.99]
        assert analysis.average_price == 19.99
        assert analysis.has_cta is True
        assert analysis.image_count == 3
        assert "No customer reviews detected." in analysis.issues
        assert "Shipping and returns information not visible." in analysis.issues
        assert "Few product images detected." not in analysis.issues
        assert len(analysis.issues) == len(analysis.recommendations)

    def test_reuses_given_signals(self):
        """Test that precomputed signals are used as-is"""
        url = f"{STORE}/products/mug-a"
        html = product_html("Mug A", "€19.99")
        signals = ExtractorService.extract_signals(html, url)

        assert analyze_product_page(html, url, signals).h1 == signals.h1


class TestStructuredProducts:
    def test_products_from_json_ld(self):
        """Test analyses built from JSON-LD products"""
        html = """
        <script type="application/ld+json">
        {"@type": "Product", "name": "Blue Mug", "url": "https://shop.example.com/products/blue-mug",
         "description": "Short.", "image": "a.jpg", "offers": {"price": "24.90"}}
        </script>
        <p>Free shipping</p>
        """
        signals = ExtractorService.extract_signals(html, f"{STORE}/collections/all")
        analyses = products_from_structured_data(signals, html)

        assert len(analyses) == 1
        analysis = analyses[0]
        assert analysis.source == "structured_data"
        assert analysis.url == f"{STORE}/products/blue-mug"
        assert analysis.detected_prices == [24.9]
        assert analysis.has_shipping_returns is True
        assert "Product description is too short." in analysis.issues
        assert "Only 1 image(s) detected." in analysis.issues


class TestCommerceProducts:
    def test_connector_products(self):
        """Test analyses for connector-supplied products"""
        product = CommerceApiProduct(
            title="Blue Mug",
            handle="blue-mug",
            body_html="<p>A mug.</p>",
            images=[{"src": "a.jpg", "alt": ""}],
            variants=[{"price": "19.90"}, {"price": "0"}, {"price": "n/a"}],
        )
        analysis = analyze_commerce_products([product], origin=STORE)[0]

        assert analysis.source == "commerce_api"
        assert analysis.url == f"{STORE}/products/blue-mug"
        assert analysis.detected_prices == [19.9]
        assert analysis.has_cta is True
        assert analysis.meta_description == "A mug."
        assert "Only 1 image(s), which is not enough." in analysis.issues
        assert "1 image(s) without alt text." in analysis.issues
        assert "No tags or category defined." in analysis.issues

    def test_handle_is_derived_without_origin(self):
        """Test the fallback URL when no handle or origin is known"""
        analysis = analyze_commerce_products([CommerceApiProduct(title="Blue Mug XL")])[0]

        assert analysis.url == "shopify://products/blue-mug-xl"
        assert analysis.average_price is None
        assert "No price found on the variants." in analysis.issues


class TestPublicCatalog:
    @pytest.mark.asyncio
    async def test_reads_products_json(self):
        """Test catalog analyses from a public products.json"""
        payload = {"products": [
            {"title": "Mug", "handle": "mug", "tags": ["mugs"], "variants": [{"price": "12.00"}],
             "images": [{"src": "1.jpg", "alt": "mug"}] * 3,
             "body_html": "<p>Stoneware mug with free shipping and five-star reviews from our customers.</p>"},
            "garbage",
        ]}
        fetcher = FakeFetcher({}, texts={f"{STORE}/products.json?limit=250": json.dumps(payload)})

        analyses = await fetch_public_catalog(f"{STORE}/", fetcher)

        assert len(analyses) == 1
        assert analyses[0].source == "catalog"
        assert analyses[0].url == f"{STORE}/products/mug"
        assert analyses[0].average_price == 12.0
        assert analyses[0].issues == []

    @pytest.mark.asyncio
    async def test_non_json_catalog(self):
        """Test that an HTML answer on the catalog path yields nothing"""
        fetcher = FakeFetcher({}, texts={f"{STORE}/products.json?limit=250": "<html>Not found</html>"})
        assert await fetch_public_catalog(f"{STORE}/", fetcher) == []

    @pytest.mark.asyncio
    async def test_missing_catalog(self):
        """Test that a store without the endpoint yields nothing"""
        assert await fetch_public_catalog(f"{STORE}/", FakeFetcher({})) == []


def test_average():
    """Test the rounded mean helper"""
    assert average([]) is None
    assert average([10, 20, 25]) == 18.33
