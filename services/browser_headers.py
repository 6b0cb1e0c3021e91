"""
Browser-like request headers for unauthenticated page fetches.

User-Agent comes from fake-useragent; Accept-Language and Referer are
rotated from small fixed pools.
"""

import random
from typing import Dict, Optional

from fake_useragent import UserAgent

ACCEPT_LANGUAGES = [
    "en-US,en;q=0.9",
    "en-GB,en;q=0.9,en-US;q=0.8",
    "ja,en-US;q=0.9,en;q=0.8",
    "en-US,en;q=0.8,ja;q=0.6",
]

REFERERS = [
    "https://www.google.com/",
    "https://www.ebay.com/",
    "https://www.bing.com/",
    None,
]

FALLBACK_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36"
)

_user_agents: Optional[UserAgent] = None


def _random_user_agent() -> str:
    global _user_agents
    if _user_agents is None:
        _user_agents = UserAgent(fallback=FALLBACK_USER_AGENT)
    return _user_agents.random


def browser_headers(rng: Optional[random.Random] = None) -> Dict[str, str]:
    """A fresh, randomly rotated header set"""
    rng = rng or random
    headers = {
        "User-Agent": _random_user_agent(),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": rng.choice(ACCEPT_LANGUAGES),
        "Cache-Control": "no-cache",
    }
    referer = rng.choice(REFERERS)
    if referer:
        headers["Referer"] = referer
    return headers
