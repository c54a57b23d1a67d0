"""URL identity helpers.

``url_key`` is the storage identity for every per-page artifact. It hashes
the literal URL string: no normalisation, so ``/a`` and ``/a/`` are two
different pages.
"""

from __future__ import annotations

import hashlib
from urllib.parse import urlparse

KEY_LENGTH = 16


def url_key(url: str) -> str:
    """Return the 16-hex-character SHA-256 prefix of *url*."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:KEY_LENGTH]


def extract_domain(url: str) -> str:
    """Hostname with a leading ``www.`` removed, ``"unknown"`` if unparsable."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return "unknown"
    if not hostname:
        return "unknown"
    return hostname.removeprefix("www.")


def page_name_from_url(url: str) -> str:
    """Readable page name from the last path segment: ``/about-us`` → ``About Us``."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Unknown Page"
    if not parsed.scheme or not parsed.netloc:
        return "Unknown Page"

    path = parsed.path
    if path in ("", "/"):
        return "Home"

    last_segment = path.rstrip("/").split("/")[-1]
    words = last_segment.replace("-", " ").replace("_", " ").split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)
