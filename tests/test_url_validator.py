"""
Tests for store URL validation and the error envelope
"""
import pickle

import pytest

from app.platform.exceptions import ScanPipelineError
from app.platform.utils.url_validator import normalize_url, origin_of, validate_url


class TestValidateUrl:
    """Tests for validate_url"""

    def test_bare_host_gets_https(self):
        """Test that a scheme-less host is normalised to https"""
        assert normalize_url("  shop.example.com ") == ("https://shop.example.com", True)
        assert validate_url("shop.example.com") == (True, "https://shop.example.com", "")

    def test_http_is_kept(self):
        """Test that an explicit http URL is accepted unchanged"""
        assert validate_url("http://shop.example.com/a") == (True, "http://shop.example.com/a", "")

    @pytest.mark.parametrize("url", ["", "   ", "ftp://shop.example.com", "https://", "not a url"])
    def test_invalid_urls(self, url):
        """Test that empty, non-http and hostless URLs are rejected"""
        is_valid, _, error = validate_url(url)
        assert is_valid is False
        assert error

    def test_origin_of(self):
        """Test origin extraction"""
        assert origin_of("https://shop.example.com:8443/products/a?x=1") == "https://shop.example.com:8443"


class TestScanPipelineError:
    def test_to_dict(self):
        """Test the error payload"""
        error = ScanPipelineError("INVALID_URL", "Invalid URL scheme")
        assert error.to_dict() == {"error_code": "INVALID_URL", "message": "Invalid URL scheme"}

    def test_survives_pickling(self):
        """Test that the code is kept when the error crosses the result backend"""
        error = pickle.loads(pickle.dumps(ScanPipelineError("INVALID_URL", "Invalid URL scheme")))
        assert (error.code, error.message) == ("INVALID_URL", "Invalid URL scheme")
