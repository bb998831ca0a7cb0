"""
Browser-like request headers.

Reading sites commonly reject obvious bots, so every request carries a real
desktop browser fingerprint plus the referer and language headers a browser
would send.
"""

from __future__ import annotations

import random
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

DESKTOP_AGENTS: List[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
]

ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


class UserAgentRotator:
    """Picks desktop user agents, or always returns a fixed one when configured."""

    def __init__(self, fixed: Optional[str] = None, rng: Optional[random.Random] = None):
        self.fixed = fixed
        self._rng = rng or random.Random()

    def get(self) -> str:
        if self.fixed:
            return self.fixed
        return self._rng.choice(DESKTOP_AGENTS)


def referer_for(url: str) -> str:
    """Site root of ``url``, used as the Referer header."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}/"


def browser_headers(
    url: str,
    user_agent: str,
    accept_language: str,
    overrides: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Build the header set for one request; ``overrides`` win over defaults."""
    headers = {
        "User-Agent": user_agent,
        "Accept": ACCEPT_HTML,
        "Accept-Language": accept_language,
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    }
    referer = referer_for(url)
    if referer:
        headers["Referer"] = referer
    if overrides:
        headers.update(overrides)
    return headers
