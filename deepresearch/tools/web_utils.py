from __future__ import annotations

import re
from urllib.parse import urlparse


def is_valid_url(url: str) -> bool:
    """Only absolute http(s) urls are researchable."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def truncate_content(text: str, max_length: int, *, suffix: str = "...") -> str:
    """Collapse whitespace and cut to max_length, marking the cut with suffix."""
    text = re.sub(r"\s+", " ", text or "").strip()
    if len(text) > max_length:
        text = text[:max_length] + suffix
    return text


def extract_domain(url: str) -> str:
    """Extract domain from URL for display."""
    try:
        return urlparse(url).netloc or url
    except ValueError:
        return url
