from urllib.parse import quote, urljoin, urlparse, urlunparse

ABSOLUTE_PREFIXES = ("http://", "https://")
PLAYLIST_EXTENSIONS = (".m3u8", ".m3u")


def is_absolute_url(url: str) -> bool:
    return url.lower().startswith(ABSOLUTE_PREFIXES)


def normalize_stream_url(url: str) -> str:
    """
    Turn a stored upstream address into something we can fetch:
    - strip surrounding whitespace
    - prepend http:// when no http/https scheme is present
    """
    url = url.strip()
    if is_absolute_url(url):
        return url
    return f"http://{url}"


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Not an absolute URL: {url!r}")
    return urlunparse((parsed.scheme, parsed.netloc, "", "", "", ""))


def resolve_against(uri: str, base_url: str) -> str:
    """
    Resolve a playlist reference to an absolute URL:
    - "/abs/seg.ts" is anchored at the origin of base_url
    - anything else is resolved relative to base_url itself, so "seg.ts"
      lands in the playlist's directory and "?v=2" stays on the playlist
    """
    if uri.startswith("/") and not uri.startswith("//"):
        return origin_of(base_url) + uri
    return urljoin(base_url, uri)


def looks_like_playlist(url: str) -> bool:
    return urlparse(url).path.lower().endswith(PLAYLIST_EXTENSIONS)


def static_path(category: str, link_id: int) -> str:
    return f"/stream/{quote(category.lower(), safe='')}/{link_id}"


def header_safe(value: str) -> str:
    # header values must stay ASCII
    return quote(value, safe="")
