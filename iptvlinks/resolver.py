import logging
from typing import List, NamedTuple

from .errors import CategoryMismatch, InvalidIdFormat, LinkNotFound, MissingOriginalUrl
from .storage import Link
from .url_utils import normalize_stream_url

logger = logging.getLogger(__name__)


class ResolvedStream(NamedTuple):
    link: Link
    target_url: str


def parse_link_id(raw: str) -> int:
    raw = (raw or "").strip()
    if not (raw.isascii() and raw.isdigit()):
        raise InvalidIdFormat()
    return int(raw)


def resolve_stream(links: List[Link], category: str, raw_id: str) -> ResolvedStream:
    """Find the link behind ``/stream/{category}/{id}`` and its fetchable URL.

    A link with the right id but a different category means the static link
    is stale, which is reported as a mismatch rather than a miss.
    """
    link_id = parse_link_id(raw_id)
    wanted = category.strip().lower()

    link = next((l for l in links if l.id == link_id and l.category.lower() == wanted), None)
    if link is None:
        other = next((l for l in links if l.id == link_id), None)
        if other is not None:
            raise CategoryMismatch(other.category, category)
        raise LinkNotFound(link_id)

    if not link.original or not link.original.strip():
        raise MissingOriginalUrl()

    target = normalize_stream_url(link.original)
    logger.info("Resolved %s/%s (%s) -> %s", wanted, link_id, link.name, target)
    return ResolvedStream(link, target)
