import httpx
import pytest
from unittest.mock import patch

from app.features.scan.services.analysis.price_intelligence import (
    build_price_insights,
    estimate_competitor_price,
    extract_price_tokens,
    plausible_competitor_average,
)
from app.platform.config import settings


class TestBuildPriceInsights:
    def test_aggregates_store_prices(self):
        """Test min, max and mean over deduplicated positive prices"""
        insights = build_price_insights([10, 20, 20, 0, 30], ["/products/a", "/products/a", "/products/b"])

        assert insights.detected_prices == [10, 20, 30]
        assert insights.own_average_price == 20.0
        assert insights.own_min_price == 10
        assert insights.own_max_price == 30
        assert insights.product_pages == ["/products/a", "/products/b"]
        assert insights.competitor_average_price is None

    def test_no_prices(self):
        """Test that a store without prices has no aggregates"""
        insights = build_price_insights([], [])

        assert insights.own_average_price is None
        assert insights.own_min_price is None
        assert insights.own_max_price is None

    def test_caps_detected_prices(self):
        """Test that at most 40 prices are kept"""
        insights = build_price_insights([float(i) for i in range(1, 100)], [])
        assert len(insights.detected_prices) == 40


class TestCompetitorHelpers:
    def test_extract_price_tokens_filters_noise(self):
        """Test that only plausible prices survive"""
        assert extract_price_tokens("Mug €25.50, shipping 1€, pallet 99999$") == [25.5]

    def test_plausible_competitor_average(self):
        """Test the (0.1x, 5x) plausibility window around the store average"""
        assert plausible_competitor_average([1, 5, 20, 30, 600], 20) == 18.33
        assert plausible_competitor_average([1, 600], 20) is None


class TestEstimateCompetitorPrice:
    @staticmethod
    def search_client(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_estimates_from_search_results(self):
        """Test the competitor mean from search result pages"""
        queries = []

        def handler(request):
            queries.append(request.url.params["q"])
            return httpx.Response(200, text="<div>Mug A €24.00</div><div>Mug B 26,00 €</div>")

        with patch.object(settings, "COMPETITOR_LOOKUP_ENABLED", True):
            estimate = await estimate_competitor_price(
                ["Blue Mug", "Blue Mug", "XL", "Red Bowl"], 25.0, client=self.search_client(handler)
            )

        assert estimate == 25.0
        assert sorted(queries) == ["Blue Mug price", "Red Bowl price"]

    @pytest.mark.asyncio
    async def test_search_failure_yields_none(self):
        """Test that blocked or failing searches never raise"""
        def handler(request):
            if "Blue" in request.url.params["q"]:
                return httpx.Response(403, text="blocked")
            raise httpx.ConnectTimeout("slow", request=request)

        with patch.object(settings, "COMPETITOR_LOOKUP_ENABLED", True):
            estimate = await estimate_competitor_price(
                ["Blue Mug", "Red Bowl"], 25.0, client=self.search_client(handler)
            )
        assert estimate is None

    @pytest.mark.asyncio
    async def test_disabled_or_nothing_to_compare(self):
        """Test the early exits"""
        with patch.object(settings, "COMPETITOR_LOOKUP_ENABLED", False):
            assert await estimate_competitor_price(["Blue Mug"], 25.0) is None
        with patch.object(settings, "COMPETITOR_LOOKUP_ENABLED", True):
            assert await estimate_competitor_price(["Blue Mug"], None) is None
            assert await estimate_competitor_price([], 25.0) is None
