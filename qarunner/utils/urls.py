"""URL helpers: relative URL resolution and glob patterns for navigation checks.

`*` matches within one path segment and `**` matches across segments; every
other character, `?` included, is literal. Patterns without a scheme are
matched against the URL path, plus the query string when the pattern has
one. Patterns such as `https://host/app/**` are matched against the whole
URL (without fragment).
"""

from __future__ import annotations

import re
from functools import lru_cache
from urllib.parse import urljoin, urlsplit


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern:
    if len(pattern) > 1 and pattern.endswith("/") and not pattern.endswith("://"):
        pattern = pattern.rstrip("/")

    out: list[str] = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "*":
            if pattern.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        else:
            out.append(re.escape(ch))
        i += 1

    # tolerate one trailing slash on the actual URL
    return re.compile("".join(out) + "/?")


def url_matches(url: str, pattern: str) -> bool:
    if not pattern:
        return True
    regex = glob_to_regex(pattern)
    if "://" in pattern:
        target = url.split("#", 1)[0]
    else:
        parts = urlsplit(url)
        target = parts.path
        if "?" in pattern:
            target = f"{target}?{parts.query}"
    return regex.fullmatch(target) is not None


def resolve_url(base_url: str, url: str | None) -> str:
    """Resolve a possibly relative URL against the public base URL."""
    if not url:
        return base_url
    if url.startswith(("http://", "https://", "about:", "data:", "file:")):
        return url
    return urljoin(base_url.rstrip("/") + "/", url)
