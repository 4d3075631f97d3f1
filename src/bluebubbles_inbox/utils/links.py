"""Link detection utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

# URL regex pattern
URL_PATTERN = re.compile(
    r'https?://[^\s<>"{}|\\^`\[\]]+'
    r'|www\.[^\s<>"{}|\\^`\[\]]+'
)


@dataclass(frozen=True)
class DetectedUrl:
    """A URL found in message text."""
    start: int
    end: int
    url: str

    @property
    def domain(self) -> str:
        host = urlparse(self.url).hostname or ""
        return host.removeprefix("www.")


def find_urls(text: str) -> list[DetectedUrl]:
    """Find all URLs in text."""
    results = []
    for match in URL_PATTERN.finditer(text):
        url = match.group()
        # Add https:// if it starts with www.
        if url.startswith("www."):
            url = "https://" + url
        results.append(DetectedUrl(match.start(), match.end(), url))
    return results


def first_url(text: str | None) -> DetectedUrl | None:
    if not text:
        return None
    return next(iter(find_urls(text)), None)
