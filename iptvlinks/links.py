"""Mutations of the link directory.

All helpers work on an in-memory ``LinksData`` snapshot; the caller loads it
from the store and saves it back afterwards.
"""

from typing import Iterable, List, Optional, Tuple

from .m3u import M3UEntry
from .storage import DEFAULT_CATEGORY, Link, LinksData


def clean_category(name: Optional[str]) -> str:
    return (name or "").strip().lower() or DEFAULT_CATEGORY


def next_id(links: Iterable[Link], category: str) -> int:
    ids = [l.id for l in links if l.category == category]
    return max(ids) + 1 if ids else 1


def find_link(data: LinksData, category: str, link_id: int) -> Optional[Link]:
    category = clean_category(category)
    return next((l for l in data.links if l.id == link_id and l.category == category), None)


def parse_composite_id(value: str) -> Tuple[str, int]:
    """``"sports-12"`` -> ``("sports", 12)``; the category itself may contain dashes."""
    category, sep, raw_id = str(value).rpartition("-")
    if not sep or not (raw_id.isascii() and raw_id.isdigit()):
        raise ValueError(f"Invalid link id {value!r}")
    return clean_category(category), int(raw_id)


def register_category(data: LinksData, category: str) -> bool:
    category = clean_category(category)
    if category in data.categories:
        return False
    data.categories.append(category)
    return True


def add_link(data: LinksData, name: str, original: str, category: Optional[str] = None) -> Link:
    category = clean_category(category)
    link = Link(
        id=next_id(data.links, category),
        name=name.strip(),
        original=original.strip(),
        category=category,
    )
    data.links.append(link)
    register_category(data, category)
    return link


def move_link(data: LinksData, link: Link, category: str) -> Link:
    """Move a link to another category, taking a fresh id if its own is taken there."""
    category = clean_category(category)
    if category == link.category:
        return link
    others = [l for l in data.links if l is not link]
    new_id = link.id
    if any(l.id == new_id and l.category == category for l in others):
        new_id = next_id(others, category)
    link.move_to(category, new_id)
    register_category(data, category)
    return link


def delete_links(data: LinksData, keys: Iterable[Tuple[str, int]]) -> int:
    wanted = {(clean_category(c), i) for c, i in keys}
    before = len(data.links)
    data.links = [l for l in data.links if (l.category, l.id) not in wanted]
    return before - len(data.links)


def rename_category(data: LinksData, old_name: str, new_name: str) -> int:
    """Rename (or merge into an existing) category; returns the number of links moved."""
    old = clean_category(old_name)
    new = clean_category(new_name)
    if old not in data.categories and not any(l.category == old for l in data.links):
        raise KeyError(old)
    if old == new:
        return 0

    moved = 0
    for link in [l for l in data.links if l.category == old]:
        move_link(data, link, new)
        moved += 1

    if new in data.categories:
        data.categories = [c for c in data.categories if c != old]
    elif old in data.categories:
        data.categories[data.categories.index(old)] = new
    else:
        data.categories.append(new)
    return moved


def delete_category(data: LinksData, name: str) -> int:
    """Drop a category; its links fall back to the default one."""
    category = clean_category(name)
    if category not in data.categories:
        raise KeyError(category)
    data.categories = [c for c in data.categories if c != category]
    if category == DEFAULT_CATEGORY:
        return 0
    moved = 0
    for link in [l for l in data.links if l.category == category]:
        move_link(data, link, DEFAULT_CATEGORY)
        moved += 1
    return moved


def replace_in_urls(links: Iterable[Link], search: str, replacement: str) -> int:
    count = 0
    for link in links:
        if search in link.original:
            link.original = link.original.replace(search, replacement)
            count += 1
    return count


def import_entries(data: LinksData, entries: List[M3UEntry], category: Optional[str]) -> List[Link]:
    """Replace every link of ``category`` with the imported entries, numbered from 1."""
    category = clean_category(category)
    new_links = [
        Link(id=i, name=entry.name, original=entry.url, category=category)
        for i, entry in enumerate(entries, start=1)
    ]
    data.links = [l for l in data.links if l.category != category] + new_links
    register_category(data, category)
    return new_links


def assign_urls(data: LinksData, keys: List[Tuple[str, int]], urls: List[str]) -> int:
    """Give the n-th selected link the n-th URL; unknown keys are skipped."""
    updated = 0
    for (category, link_id), url in zip(keys, urls):
        link = find_link(data, category, link_id)
        if link is None:
            continue
        link.original = url
        updated += 1
    return updated
