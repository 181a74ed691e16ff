"""HLS playlist rewriting.

A playlist served through ``/stream/...`` is fetched by the player from our
host, so relative segment, key and variant references would resolve against
the wrong base. ``rewrite_playlist`` makes every such reference absolute,
anchored at the upstream playlist's own location.
"""

import logging
import re
from typing import Iterable, Optional

from .config import PLAYLIST_CONTENT_TYPES
from .url_utils import is_absolute_url, resolve_against

logger = logging.getLogger(__name__)

URI_ATTRIBUTE = re.compile(r'URI="([^"]*)"')
KEY_NONE = "#EXT-X-KEY:NONE"


def is_playlist_content_type(content_type: Optional[str], types: Iterable[str] = PLAYLIST_CONTENT_TYPES) -> bool:
    if not content_type:
        return False
    lowered = content_type.lower()
    return any(t.lower() in lowered for t in types)


def resolve_playlist_uri(uri: str, base_url: str) -> str:
    if is_absolute_url(uri):
        return uri
    return resolve_against(uri, base_url)


def _rewrite_tag(line: str, base_url: str) -> str:
    match = URI_ATTRIBUTE.search(line)
    if not match:
        return line
    uri = match.group(1)
    if is_absolute_url(uri):
        return line
    try:
        absolute = resolve_playlist_uri(uri, base_url)
    except ValueError:
        logger.debug("Leaving tag unchanged, cannot resolve %r against %s", uri, base_url)
        return line
    return line[: match.start(1)] + absolute + line[match.end(1):]


def rewrite_line(line: str, base_url: str) -> str:
    line = line.rstrip()
    if not line or line == KEY_NONE:
        return line
    if line.startswith("#"):
        return _rewrite_tag(line, base_url)
    if is_absolute_url(line):
        return line
    try:
        return resolve_playlist_uri(line, base_url)
    except ValueError:
        logger.debug("Leaving line unchanged, cannot resolve %r against %s", line, base_url)
        return line


def rewrite_playlist(content: str, base_url: str) -> str:
    """Absolutize every relative URI in an M3U8 playlist.

    ``base_url`` is the full URL the playlist was served from (after any
    redirects). Lines that cannot be resolved are kept as they were.
    """
    return "\n".join(rewrite_line(line, base_url) for line in content.split("\n"))
