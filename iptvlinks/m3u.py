import re
from typing import Iterable, List, NamedTuple

UNKNOWN_CHANNEL = "Unknown Channel"

# display name is whatever follows the first comma outside quoted attributes
EXTINF_NAME = re.compile(r'^#EXTINF:(?:[^",]|"[^"]*")*,(.*)$')


class M3UEntry(NamedTuple):
    name: str
    url: str


def _extinf_name(line: str) -> str:
    match = EXTINF_NAME.match(line)
    if not match:
        return UNKNOWN_CHANNEL
    return match.group(1).strip() or UNKNOWN_CHANNEL


def parse_m3u(content: str) -> List[M3UEntry]:
    """Pair each ``#EXTINF`` name with the URL line that follows it."""
    entries: List[M3UEntry] = []
    name = UNKNOWN_CHANNEL
    for raw in content.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#EXTINF:"):
            name = _extinf_name(line)
        elif not line.startswith("#"):
            entries.append(M3UEntry(name, line))
            name = UNKNOWN_CHANNEL
    return entries


def parse_m3u_urls(content: str) -> List[str]:
    urls = []
    for raw in content.splitlines():
        line = raw.strip()
        if line and not line.startswith("#") and line.lower().startswith(("http://", "https://")):
            urls.append(line)
    return urls


def build_m3u(entries: Iterable[M3UEntry], group_titles: Iterable[str] = ()) -> str:
    groups = list(group_titles)
    lines = ["#EXTM3U"]
    for i, entry in enumerate(entries):
        if i < len(groups) and groups[i]:
            lines.append(f'#EXTINF:-1 group-title="{groups[i]}",{entry.name}')
        else:
            lines.append(f"#EXTINF:-1,{entry.name}")
        lines.append(entry.url)
    return "\n".join(lines) + "\n"
