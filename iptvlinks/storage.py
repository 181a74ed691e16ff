import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import Settings
from .errors import StorageError
from .url_utils import static_path

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "uncategorized"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Link(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    original: str
    converted: str = ""
    category: str = DEFAULT_CATEGORY
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")

    @field_validator("category")
    @classmethod
    def _lowercase_category(cls, v: str) -> str:
        return v.strip().lower() or DEFAULT_CATEGORY

    def model_post_init(self, __context: Any) -> None:
        # always derived, stale values from older records are replaced
        self.converted = static_path(self.category, self.id)

    def move_to(self, category: str, link_id: int) -> None:
        self.category = category.strip().lower() or DEFAULT_CATEGORY
        self.id = link_id
        self.converted = static_path(self.category, self.id)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True)


class LinksData(BaseModel):
    links: List[Link] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)


def normalize_links(raw: Any) -> List[Link]:
    """
    Coerce whatever the backend returned into an ordered list of Links:
    - a dense list
    - a sparse list with null holes (Firebase arrays)
    - a key-mapped object (Firebase push ids), kept in key order
    Entries that do not validate are dropped.
    """
    if raw is None:
        return []
    if isinstance(raw, dict):
        items = list(raw.values())
    elif isinstance(raw, list):
        items = raw
    else:
        logger.warning("Ignoring link collection of unexpected type %s", type(raw).__name__)
        return []

    links: List[Link] = []
    for item in items:
        if item is None:
            continue
        try:
            links.append(Link.model_validate(item))
        except ValidationError as exc:
            logger.warning("Dropping invalid link record %r: %s", item, exc.errors()[0].get("msg"))
    return links


def normalize_categories(raw: Any) -> List[str]:
    if isinstance(raw, dict):
        raw = list(raw.values())
    if not isinstance(raw, list):
        return []
    seen: List[str] = []
    for c in raw:
        if not isinstance(c, str):
            continue
        name = c.strip().lower()
        if name and name not in seen:
            seen.append(name)
    return seen


class LinkStore:
    """Get/put access to the link collection; subclasses supply the raw I/O."""

    def load_raw(self) -> dict:
        raise NotImplementedError

    def save_raw(self, links: Optional[list], categories: Optional[list]) -> None:
        raise NotImplementedError

    def get_links_data(self) -> LinksData:
        raw = self.load_raw()
        return LinksData(
            links=normalize_links(raw.get("links")),
            categories=normalize_categories(raw.get("categories")),
        )

    def get_all_links(self) -> List[Link]:
        return self.get_links_data().links

    def save_links_data(self, data: LinksData) -> None:
        self.save_raw([l.dump() for l in data.links], list(data.categories))
        logger.info("Saved %d links, %d categories", len(data.links), len(data.categories))

    def save_links(self, links: List[Link]) -> None:
        self.save_raw([l.dump() for l in links], None)
        logger.info("Saved %d links", len(links))


class FileLinkStore(LinkStore):
    def __init__(self, path: Path):
        self.path = Path(path)

    def load_raw(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Unexpected content in {self.path}")
        return data

    def save_raw(self, links: Optional[list], categories: Optional[list]) -> None:
        data = self.load_raw()
        if links is not None:
            data["links"] = links
        if categories is not None:
            data["categories"] = categories
        data.setdefault("links", [])
        data.setdefault("categories", [])
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to write {self.path}: {exc}") from exc


class FirebaseLinkStore(LinkStore):
    """Firebase Realtime Database over its REST API (``<db>/<path>.json``)."""

    def __init__(self, database_url: str, auth_token: Optional[str] = None, timeout: float = 10):
        self.database_url = database_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout

    def _url(self, key: str) -> str:
        return f"{self.database_url}/{key}.json"

    def _params(self) -> dict:
        return {"auth": self.auth_token} if self.auth_token else {}

    def _get(self, key: str) -> Any:
        try:
            resp = requests.get(self._url(key), params=self._params(), timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise StorageError(f"Failed to read /{key} from Firebase: {exc}") from exc

    def _put(self, key: str, value: Any) -> None:
        try:
            resp = requests.put(self._url(key), params=self._params(), json=value, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise StorageError(f"Failed to write /{key} to Firebase: {exc}") from exc

    def load_raw(self) -> dict:
        return {"links": self._get("links"), "categories": self._get("categories")}

    def save_raw(self, links: Optional[list], categories: Optional[list]) -> None:
        if links is not None:
            self._put("links", links)
        if categories is not None:
            self._put("categories", categories)


def create_store(settings: Settings) -> LinkStore:
    if settings.storage_backend == "firebase":
        if not settings.firebase_database_url:
            raise StorageError("FIREBASE_DATABASE_URL is required for the firebase backend")
        logger.info("Using Firebase link store at %s", settings.firebase_database_url)
        return FirebaseLinkStore(settings.firebase_database_url, settings.firebase_auth_token)
    logger.info("Using file link store at %s", settings.data_file)
    return FileLinkStore(settings.data_file)
