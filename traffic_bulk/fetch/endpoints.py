"""URL builders for traffic.cv endpoints."""
from urllib.parse import quote

from traffic_bulk.config import config

# Upstream bulk checker accepts at most this many domains per query
MAX_DOMAINS_PER_QUERY = 10


def build_bulk_url(domains: list[str], base_url: str | None = None) -> str:
    """Get the bulk lookup URL for up to 10 normalized domains."""
    if not domains:
        raise ValueError("at least one domain is required")
    if len(domains) > MAX_DOMAINS_PER_QUERY:
        raise ValueError(f"at most {MAX_DOMAINS_PER_QUERY} domains per query, got {len(domains)}")
    base = (base_url or config.UPSTREAM_BASE_URL).rstrip("/")
    joined = ",".join(domains)
    return f"{base}/bulk?domains={quote(joined, safe=',')}"
