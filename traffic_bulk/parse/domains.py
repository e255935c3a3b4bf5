"""Domain normalization and validation utilities."""
import re
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel

T = TypeVar("T")

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_WWW_RE = re.compile(r"^www\.", re.IGNORECASE)
_CUT_RE = re.compile(r"[/?#\s]")
_PORT_RE = re.compile(r":\d+$")
_DOMAIN_RE = re.compile(r"^([a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?\.)+[a-z0-9\-]{2,}$", re.IGNORECASE)


class NormalizedDomain(BaseModel):
    """A normalized domain and the raw string it came from."""

    domain: str
    original: str


def _normalize_once(value: str) -> str:
    value = value.strip()
    value = _SCHEME_RE.sub("", value)
    value = _WWW_RE.sub("", value)
    value = _CUT_RE.split(value, maxsplit=1)[0]
    value = _PORT_RE.sub("", value)
    value = value.rstrip(".")
    return value.lower()


def normalize(raw: Any) -> str:
    """
    Canonicalize a free-form domain string into a comparable key.

    Strips scheme, a leading ``www.``, path/query/fragment, port and trailing
    dots, then lowercases. Never raises; garbage in gives a best-effort token.
    """
    if raw is None:
        return ""
    value = raw if isinstance(raw, str) else str(raw)
    # After the first pass every change only removes characters, so this terminates
    while True:
        result = _normalize_once(value)
        if result == value:
            return value
        value = result


def www_variants(domain: str) -> list[str]:
    """Return the bare and www.-prefixed forms of a domain."""
    bare = normalize(domain)
    if not bare:
        return []
    return [bare, f"www.{bare}"]


def is_valid_domain(domain: str) -> bool:
    """Check if a normalized string looks like a domain."""
    if not domain:
        return False
    return bool(_DOMAIN_RE.match(domain))


def parse_domain_list(text: str) -> list[str]:
    """Split pasted input (one per line and/or comma separated) into raw domains."""
    if not text or not text.strip():
        return []
    return [part.strip() for part in re.split(r"[\n,]+", text) if part.strip()]


def dedupe_domains(raw_domains: Iterable[Any]) -> list[NormalizedDomain]:
    """Normalize and deduplicate, keeping first-seen order. Empty results are dropped."""
    seen: set[str] = set()
    result: list[NormalizedDomain] = []
    for raw in raw_domains:
        domain = normalize(raw)
        if not domain or domain in seen:
            continue
        seen.add(domain)
        result.append(NormalizedDomain(domain=domain, original=str(raw).strip()))
    return result


def chunk(items: list[T], size: int) -> list[list[T]]:
    """Split a list into consecutive chunks of at most ``size`` items."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [items[i : i + size] for i in range(0, len(items), size)]
