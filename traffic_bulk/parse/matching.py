"""Resolve domain-ish text found on the page back to the requested domains."""
import re
from typing import Iterable, Optional

from traffic_bulk.parse.domains import normalize, www_variants


class DomainMatcher:
    """
    Lookup table from normalized forms (bare and ``www.``) to requested domains.

    The upstream echoes domains with its own casing and prefixes, so every
    comparison goes through ``normalize``.
    """

    def __init__(self, domains: Iterable[str]):
        self.domains: list[str] = []
        self._lookup: dict[str, str] = {}
        self._patterns: dict[str, re.Pattern] = {}
        for domain in domains:
            variants = www_variants(domain)
            if not variants or domain in self.domains:
                continue
            self.domains.append(domain)
            for variant in variants:
                self._lookup.setdefault(variant, domain)
            key = variants[0]
            self._patterns[domain] = re.compile(
                rf"(?<![a-z0-9.-])(?:www\.)?{re.escape(key)}(?![a-z0-9-]|\.[a-z])",
                re.IGNORECASE,
            )

    def __len__(self) -> int:
        return len(self.domains)

    def __contains__(self, domain: str) -> bool:
        return domain in self.domains

    def match(self, text: Optional[str]) -> Optional[str]:
        """Map a candidate string (cell text, attribute) to a requested domain."""
        key = normalize(text)
        if not key:
            return None
        if key in self._lookup:
            return self._lookup[key]
        if f"www.{key}" in self._lookup:
            return self._lookup[f"www.{key}"]
        for domain in self.domains:
            if normalize(domain) == key:
                return domain
        return None

    def find_in_text(self, text: Optional[str]) -> list[str]:
        """Requested domains appearing in free text on token boundaries, in request order."""
        if not text:
            return []
        return [domain for domain in self.domains if self._patterns[domain].search(text)]

    def locate(self, domain: str, text: str) -> Optional[re.Match]:
        """First boundary-aware occurrence of a requested domain in text."""
        pattern = self._patterns.get(domain)
        if pattern is None or not text:
            return None
        return pattern.search(text)
