"""
Conservative URL canonicalization.

Lower-cases scheme and host, drops the fragment, strips common tracking
parameters and removes a trailing slash from non-root paths.
"""

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAM_PREFIXES = ("utm_",)
TRACKING_PARAMS = {"fbclid", "gclid", "mc_cid", "mc_eid"}


def _is_tracking(key: str) -> bool:
    lowered = key.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PARAM_PREFIXES)


def canonicalize_url(url: str) -> str:
    parts = urlsplit(url.strip())
    query = urlencode(
        [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking(k)]
    )
    path = parts.path
    if path != "/" and path.endswith("/"):
        path = path[:-1]
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, ""))


def safe_canonicalize_url(url: Optional[str]) -> Optional[str]:
    """Canonicalize an http(s) URL; anything else comes back unchanged."""
    if not url or not url.startswith(("http://", "https://")):
        return url
    try:
        return canonicalize_url(url)
    except ValueError:
        return url
