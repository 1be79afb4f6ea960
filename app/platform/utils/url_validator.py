from urllib.parse import urlparse
from typing import Tuple


def normalize_url(url: str) -> Tuple[str, bool]:
    """Prefix a bare host with https://. Returns (url, was_modified)."""
    url = url.strip()

    parsed = urlparse(url)

    if not parsed.scheme:
        return f"https://{url}", True

    return url, False


def validate_url(url: str) -> Tuple[bool, str, str]:
    """Returns (is_valid, normalized_url, error_message)."""
    if not url or not url.strip():
        return False, "", "URL cannot be empty"

    normalized_url, _ = normalize_url(url)

    try:
        parsed = urlparse(normalized_url)
    except ValueError as e:
        return False, normalized_url, f"URL parsing error: {str(e)}"

    if parsed.scheme not in ['http', 'https']:
        return False, normalized_url, f"Invalid URL scheme: {parsed.scheme} (must be http or https)"

    if not parsed.netloc or " " in parsed.netloc:
        return False, normalized_url, "Invalid URL format: missing domain"

    return True, normalized_url, ""


def origin_of(url: str) -> str:
    """scheme://host[:port] of a URL, with no trailing slash."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"
