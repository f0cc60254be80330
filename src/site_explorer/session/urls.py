"""
URL canonicalization and page identity.

Two URLs that differ only in fragment, tracking parameters, parameter
order, default port, host case, or a trailing slash map to the same
page identity.
"""

import fnmatch
import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

DEFAULT_VOLATILE_PARAMS = (
    "utm_*",
    "gclid",
    "fbclid",
    "msclkid",
    "_ga",
    "sessionid",
    "sid",
    "phpsessid",
    "jsessionid",
)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def _is_volatile(name: str, patterns: tuple[str, ...] | list[str]) -> bool:
    lowered = name.lower()
    return any(fnmatch.fnmatchcase(lowered, p.lower()) for p in patterns)


def normalize_url(
    url: str,
    volatile_params: tuple[str, ...] | list[str] = DEFAULT_VOLATILE_PARAMS,
    keep_hash_routes: bool = False,
) -> str:
    """
    Canonicalize a URL.

    - Lowercases scheme and host
    - Removes default ports
    - Removes trailing slashes (except root)
    - Removes fragments, except "#/" and "#!/" routes when keep_hash_routes is set
    - Drops volatile query parameters and sorts the rest

    Relative or unparseable input is returned unchanged.

    Example:
        >>> normalize_url("HTTPS://Example.com:443/contact/?utm_source=x&b=2&a=1#top")
        'https://example.com/contact?a=1&b=2'
    """
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url

    if not parsed.scheme or not parsed.netloc:
        return url

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()

    if netloc.endswith(":80") and scheme == "http":
        netloc = netloc[:-3]
    elif netloc.endswith(":443") and scheme == "https":
        netloc = netloc[:-4]

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    params = [
        (k, v)
        for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_volatile(k, volatile_params)
    ]
    query = urlencode(sorted(params))

    fragment = ""
    if keep_hash_routes and parsed.fragment.startswith(("/", "!/")):
        fragment = parsed.fragment.rstrip("/") or "/"

    return urlunparse((scheme, netloc, path, parsed.params, query, fragment))


def url_hash(canonical_url: str) -> str:
    """
    Stable, filesystem-safe page identity for a canonical URL.

    Shape: <domain>_<path slug>_<first 8 hex of md5(url)>. The slug keeps
    identities readable in session folders; the digest keeps them unique.

    Example:
        >>> url_hash("https://example.com/contact")
        'example.com_contact_...'
    """
    parsed = urlparse(canonical_url)
    domain = parsed.netloc.replace(":", "_") or "local"
    slug = _SLUG_RE.sub("_", parsed.path.lower()).strip("_")[:20] or "root"
    digest = hashlib.md5(canonical_url.encode("utf-8")).hexdigest()[:8]
    return f"{domain}_{slug}_{digest}"


def is_same_page(first: str, second: str, **normalize_kwargs) -> bool:
    """Check whether two raw URLs resolve to the same page identity."""
    return normalize_url(first, **normalize_kwargs) == normalize_url(second, **normalize_kwargs)
